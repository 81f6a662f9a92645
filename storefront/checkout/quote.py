"""
Browse-time pricing preview.

Looks the entered coupon up, reads its usage counts, validates it against the
current cart and prices the cart. Nothing is persisted and nothing here is
binding: the orchestrator repeats the same evaluation against live data at
commit time.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Tuple, Union

from storefront.cart.store import CartStore
from storefront.coupons.validator import Invalid, ValidationOutcome, validate
from storefront.data.base import CouponStore
from storefront.data.records import Coupon, normalize_code
from storefront.pricing.calculator import PricingResult, compute_subtotal, compute_totals
from storefront.pricing.money import Money
from storefront.pricing.shipping import ShippingRule
from storefront.utils.logger import get_logger

logger = get_logger("checkout.quote")


async def evaluate_coupon(
    coupons: CouponStore,
    code: str,
    cart_lines: Sequence,
    subtotal: Money,
    user_id: Optional[str],
    now: datetime,
) -> Tuple[ValidationOutcome, Optional[Coupon]]:
    """Fetch the coupon and its usage counts, then run ``validate``."""
    coupon = await coupons.get_coupon_by_code(code)
    total_usage = 0
    user_usage = 0
    # Usage is only counted for caps that are set
    if coupon is not None and coupon.id is not None:
        if coupon.max_uses is not None:
            total_usage = await coupons.count_usage(coupon.id)
        if coupon.max_uses_per_user is not None and user_id is not None:
            user_usage = await coupons.count_usage_by_user(coupon.id, user_id)
    outcome = validate(
        coupon,
        cart_lines,
        subtotal,
        user_id,
        now,
        prior_usage_by_user=user_usage,
        total_usage_count=total_usage,
        code=code,
    )
    logger.info(
        "coupon: code=%s valid=%s reason=%s total_usage=%s user_usage=%s",
        normalize_code(code), outcome.is_valid,
        getattr(outcome, "reason", None), total_usage, user_usage,
    )
    return outcome, coupon


@dataclass(frozen=True)
class Quote:
    pricing: PricingResult
    coupon_outcome: Optional[ValidationOutcome] = None

    @property
    def coupon_error(self) -> Optional[str]:
        if isinstance(self.coupon_outcome, Invalid):
            return self.coupon_outcome.message
        return None


async def quote(
    cart: CartStore,
    coupons: CouponStore,
    shipping: Union[Money, ShippingRule],
    now: datetime,
    coupon_code: Optional[str] = None,
    user_id: Optional[str] = None,
    destination: Optional[str] = None,
) -> Quote:
    """Price ``cart`` with an optional coupon code for display."""
    lines = cart.get_lines()
    outcome = None
    if coupon_code and normalize_code(coupon_code):
        outcome, _ = await evaluate_coupon(
            coupons, coupon_code, lines, compute_subtotal(lines), user_id, now
        )
    pricing = compute_totals(lines, outcome, shipping, destination)
    return Quote(pricing=pricing, coupon_outcome=outcome)
