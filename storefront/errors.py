"""
Error taxonomy for the storefront engine.

Every error here is recoverable: the checkout orchestrator turns them into
rejected outcomes with reason codes, and the HTTP layer maps them to status
codes.
"""
from typing import Optional


class StorefrontError(Exception):
    """Base class for storefront engine errors."""


class ValidationError(StorefrontError):
    """A coupon rule or admin input check failed."""

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or reason)


class StockError(StorefrontError):
    """Requested quantity exceeds live stock."""

    def __init__(self, variant_id: str, requested: int, available: int):
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Only {available} of variant {variant_id} available (requested {requested})"
        )


class NotFoundError(StorefrontError):
    """Unknown variant or coupon id."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class PersistenceError(StorefrontError):
    """A backing store read or write failed."""


class PermissionDeniedError(StorefrontError):
    """The caller's roles do not allow this back-office action."""

    def __init__(self, action: str, required: str):
        self.action = action
        self.required = required
        super().__init__(f"{action} requires role {required}")
