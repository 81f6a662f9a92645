"""
Coupon / discount code validation.

``validate`` is a pure function over explicit inputs: the coupon record (or
None), a cart snapshot, its subtotal, the shopper's id, the clock reading and
the usage counts derived from committed orders. Checks run in a fixed order
and stop at the first failure:

  1. coupon exists                  -> NOT_FOUND
  2. coupon is active               -> INACTIVE
  3. now >= starts_at               -> NOT_STARTED
  4. now <= ends_at                 -> EXPIRED
  5. cart has lines                 -> EMPTY_CART
  6. subtotal >= min_subtotal       -> BELOW_MINIMUM_SUBTOTAL
  7. total usage < max_uses         -> TOTAL_USES_EXCEEDED
  8. user usage < max_uses_per_user -> PER_USER_USES_EXCEEDED

Guests (no user id) always pass check 8: a per-user cap cannot be enforced
without an identity.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Sequence, Union

from storefront.data.records import Coupon, DiscountType, normalize_code
from storefront.pricing.money import Money, ensure_money, percent_of


class InvalidReason(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    NOT_STARTED = "NOT_STARTED"
    EXPIRED = "EXPIRED"
    EMPTY_CART = "EMPTY_CART"
    BELOW_MINIMUM_SUBTOTAL = "BELOW_MINIMUM_SUBTOTAL"
    TOTAL_USES_EXCEEDED = "TOTAL_USES_EXCEEDED"
    PER_USER_USES_EXCEEDED = "PER_USER_USES_EXCEEDED"

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_MESSAGES = {
    InvalidReason.NOT_FOUND: "Invalid coupon code. Check spelling and try again.",
    InvalidReason.INACTIVE: "This coupon is no longer active.",
    InvalidReason.NOT_STARTED: "This coupon is not valid yet.",
    InvalidReason.EXPIRED: "This coupon has expired.",
    InvalidReason.EMPTY_CART: "Add items to your cart before applying a coupon.",
    InvalidReason.BELOW_MINIMUM_SUBTOTAL: "Your order does not meet this coupon's minimum subtotal.",
    InvalidReason.TOTAL_USES_EXCEEDED: "This coupon has reached its usage limit.",
    InvalidReason.PER_USER_USES_EXCEEDED: "You have already used this coupon the maximum number of times.",
}


@dataclass(frozen=True)
class Valid:
    discount: Money
    coupon: Coupon

    is_valid = True

    @property
    def code(self) -> str:
        return self.coupon.code


@dataclass(frozen=True)
class Invalid:
    reason: InvalidReason
    code: str = ""

    is_valid = False

    @property
    def message(self) -> str:
        return self.reason.message


ValidationOutcome = Union[Valid, Invalid]


def find_coupon(coupons: Iterable[Coupon], code: str) -> Optional[Coupon]:
    """Case- and whitespace-insensitive lookup of ``code`` among ``coupons``."""
    wanted = normalize_code(code)
    for coupon in coupons:
        if coupon.code == wanted:
            return coupon
    return None


def compute_discount(coupon: Coupon, subtotal: Money) -> Money:
    """Discount for ``coupon`` on ``subtotal``, never more than the subtotal."""
    ensure_money(subtotal, "subtotal")
    if coupon.discount_type == DiscountType.PERCENT:
        discount = percent_of(subtotal, coupon.amount)
    else:
        discount = ensure_money(coupon.amount, "amount")
    return min(discount, subtotal)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def validate(
    coupon: Optional[Coupon],
    cart_lines: Sequence,
    subtotal: Money,
    user_id: Optional[str],
    now: datetime,
    prior_usage_by_user: int = 0,
    total_usage_count: int = 0,
    code: str = "",
) -> ValidationOutcome:
    """
    Evaluate ``coupon`` against a cart snapshot.

    Args:
        coupon: The coupon record, or None when the code matched nothing.
        cart_lines: The cart lines being priced (only emptiness is checked).
        subtotal: Cart subtotal in minor units.
        user_id: Authenticated shopper id, or None for guest checkout.
        now: Current time; naive values are treated as UTC.
        prior_usage_by_user: Committed orders by this user with this coupon.
        total_usage_count: Committed orders with this coupon.
        code: The code as entered, echoed back on NOT_FOUND.

    Returns:
        ``Valid(discount)`` or ``Invalid(reason)``.
    """
    if coupon is None:
        return Invalid(InvalidReason.NOT_FOUND, normalize_code(code))

    if not coupon.is_active:
        return Invalid(InvalidReason.INACTIVE, coupon.code)

    now = _as_utc(now)
    if coupon.starts_at is not None and now < coupon.starts_at:
        return Invalid(InvalidReason.NOT_STARTED, coupon.code)

    if coupon.ends_at is not None and now > coupon.ends_at:
        return Invalid(InvalidReason.EXPIRED, coupon.code)

    if not cart_lines:
        return Invalid(InvalidReason.EMPTY_CART, coupon.code)

    if subtotal < coupon.min_subtotal:
        return Invalid(InvalidReason.BELOW_MINIMUM_SUBTOTAL, coupon.code)

    if coupon.max_uses is not None and total_usage_count >= coupon.max_uses:
        return Invalid(InvalidReason.TOTAL_USES_EXCEEDED, coupon.code)

    if (
        coupon.max_uses_per_user is not None
        and user_id is not None
        and prior_usage_by_user >= coupon.max_uses_per_user
    ):
        return Invalid(InvalidReason.PER_USER_USES_EXCEEDED, coupon.code)

    return Valid(compute_discount(coupon, subtotal), coupon)
