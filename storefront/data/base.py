"""
Store interfaces consumed by the engine.

Every backend (in-memory, Supabase REST, SQL) implements the same async
methods. Read failures raise ``PersistenceError``; unknown variants raise
``NotFoundError``; a missing coupon code is ``None``, not an error.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from storefront.data.records import Coupon, OrderDraft, Variant


class CatalogStore(ABC):

    @abstractmethod
    async def get_variant(self, variant_id: str) -> Variant:
        """Return the live variant record or raise ``NotFoundError``."""


class CouponStore(ABC):
    """Coupon lookups for checkout plus the repository used by the back-office."""

    @abstractmethod
    async def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        ...

    @abstractmethod
    async def count_usage(self, coupon_id: str) -> int:
        """Committed orders that applied this coupon."""

    @abstractmethod
    async def count_usage_by_user(self, coupon_id: str, user_id: str) -> int:
        ...

    # Back-office repository

    @abstractmethod
    async def list_coupons(self) -> List[Coupon]:
        """All coupons, newest first."""

    @abstractmethod
    async def get_coupon(self, coupon_id: str) -> Optional[Coupon]:
        ...

    @abstractmethod
    async def insert_coupon(self, coupon: Coupon) -> Coupon:
        """Insert and return the stored coupon (with id); duplicate code raises ``ValidationError``."""

    @abstractmethod
    async def update_coupon(self, coupon_id: str, coupon: Coupon) -> Coupon:
        ...

    @abstractmethod
    async def delete_coupon(self, coupon_id: str) -> None:
        ...


class OrderStore(ABC):

    @abstractmethod
    async def create_order(self, draft: OrderDraft) -> str:
        """Persist the order and its lines atomically; return the order id."""
