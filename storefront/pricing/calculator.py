"""
Order total calculation.

  subtotal = sum(unit_price * quantity)
  discount = validated coupon discount, capped at subtotal (0 otherwise)
  shipping = shipping rule (or a fixed fee supplied by the caller)
  total    = subtotal - discount + shipping

Integer minor units throughout, so total >= shipping_fee >= 0 always holds.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from storefront.coupons.validator import Valid, ValidationOutcome
from storefront.pricing.money import Money, ensure_money, line_total, subtract_clamped, sum_money
from storefront.pricing.shipping import ShippingRule


@dataclass(frozen=True)
class PricingResult:
    subtotal: Money
    discount: Money
    shipping_fee: Money
    total: Money
    applied_coupon_code: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount": self.discount,
            "shipping_fee": self.shipping_fee,
            "total": self.total,
            "applied_coupon_code": self.applied_coupon_code,
        }


def compute_subtotal(cart_lines: Sequence) -> Money:
    return sum_money(line_total(line.unit_price, line.quantity) for line in cart_lines)


def compute_totals(
    cart_lines: Sequence,
    outcome: Optional[ValidationOutcome] = None,
    shipping: Union[Money, ShippingRule] = 0,
    destination: Optional[str] = None,
) -> PricingResult:
    """
    Price a cart.

    Args:
        cart_lines: Lines exposing ``unit_price`` and ``quantity``.
        outcome: Result of ``validate`` for the entered coupon, or None.
        shipping: A fixed fee, or a rule called with (subtotal, destination).
        destination: Passed through to the shipping rule.
    """
    subtotal = compute_subtotal(cart_lines)

    discount = 0
    applied_code = None
    if isinstance(outcome, Valid):
        discount = min(ensure_money(outcome.discount, "discount"), subtotal)
        applied_code = outcome.code

    if callable(shipping):
        shipping_fee = ensure_money(shipping(subtotal, destination), "shipping_fee")
    else:
        shipping_fee = ensure_money(shipping, "shipping_fee")

    total = subtract_clamped(subtotal, discount) + shipping_fee
    return PricingResult(
        subtotal=subtotal,
        discount=discount,
        shipping_fee=shipping_fee,
        total=total,
        applied_coupon_code=applied_code,
    )
