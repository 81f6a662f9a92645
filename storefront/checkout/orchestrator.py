"""
Checkout orchestration.

State machine: DRAFT -> VALIDATING -> COMMITTING -> COMPLETED | REJECTED

VALIDATING re-reads every variant and the coupon (with fresh usage counts)
because browse-time values may be stale. Lines are re-clamped to live stock
and re-priced in the cart itself, so a rejected caller can re-render the
corrected cart. Any clamp, price change, missing variant, invalid coupon or
drift from the pricing the shopper confirmed rejects the attempt with every
issue listed. Different pricing is never substituted silently.

COMMITTING writes the order (with its coupon reference) in one call. The order
row is the only record of coupon usage; no counter is incremented. Two
checkouts racing for the last use of a coupon can both pass validation; only
an order store with a conditional insert (``enforce_coupon_cap``) closes that
window. An order store that re-reads stock inside the write raises
``StockError``; the cart is clamped and the attempt rejected as a line change.

Nothing is persisted before COMMITTING, so abandoning an attempt earlier has
no side effects. No exception escapes ``checkout``: every failure becomes a
REJECTED result with reason codes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Union

from storefront.cart.store import CartStore
from storefront.coupons.validator import Invalid, InvalidReason, Valid
from storefront.checkout.quote import evaluate_coupon
from storefront.data.base import CatalogStore, CouponStore, OrderStore
from storefront.data.records import OrderDraft, OrderLine, normalize_code
from storefront.errors import NotFoundError, PersistenceError, StockError, ValidationError
from storefront.pricing.calculator import PricingResult, compute_subtotal, compute_totals
from storefront.pricing.money import Money
from storefront.pricing.shipping import ShippingRule
from storefront.utils.logger import fields, get_logger

logger = get_logger("checkout.orchestrator")


class CheckoutState(str, Enum):
    DRAFT = "draft"
    VALIDATING = "validating"
    COMMITTING = "committing"
    COMPLETED = "completed"
    REJECTED = "rejected"


_TRANSITIONS = {
    CheckoutState.DRAFT: {CheckoutState.VALIDATING, CheckoutState.REJECTED},
    CheckoutState.VALIDATING: {CheckoutState.COMMITTING, CheckoutState.REJECTED},
    CheckoutState.COMMITTING: {CheckoutState.COMPLETED, CheckoutState.REJECTED},
    CheckoutState.COMPLETED: set(),
    CheckoutState.REJECTED: set(),
}


class RejectionCode(str, Enum):
    EMPTY_CART = "EMPTY_CART"
    LINE_CHANGED = "LINE_CHANGED"
    COUPON_INVALID = "COUPON_INVALID"
    PRICING_CHANGED = "PRICING_CHANGED"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    PRICING_FAILED = "PRICING_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"


class LineIssueCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    STOCK_LIMITED = "STOCK_LIMITED"
    PRICE_CHANGED = "PRICE_CHANGED"


@dataclass(frozen=True)
class LineIssue:
    variant_id: str
    code: LineIssueCode
    requested: Optional[int] = None
    available: Optional[int] = None
    old_price: Optional[Money] = None
    new_price: Optional[Money] = None

    @classmethod
    def from_stock_error(cls, err: StockError) -> "LineIssue":
        return cls(err.variant_id, LineIssueCode.STOCK_LIMITED, requested=err.requested, available=err.available)


@dataclass(frozen=True)
class CouponIssue:
    code: str
    reason: InvalidReason

    @property
    def message(self) -> str:
        return self.reason.message


@dataclass
class CheckoutResult:
    state: CheckoutState
    pricing: Optional[PricingResult] = None
    order_id: Optional[str] = None
    reasons: List[RejectionCode] = field(default_factory=list)
    line_issues: List[LineIssue] = field(default_factory=list)
    coupon_issue: Optional[CouponIssue] = None
    message: Optional[str] = None
    history: List[CheckoutState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == CheckoutState.COMPLETED


class _Attempt:
    """Tracks one checkout attempt through the state machine."""

    def __init__(self):
        self.state = CheckoutState.DRAFT
        self.history = [CheckoutState.DRAFT]

    def advance(self, to: CheckoutState) -> None:
        if to not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal checkout transition {self.state.value} -> {to.value}")
        self.state = to
        self.history.append(to)

    def reject(self, *reasons: RejectionCode, message: str = None, **details) -> CheckoutResult:
        self.advance(CheckoutState.REJECTED)
        return CheckoutResult(
            state=self.state,
            reasons=list(reasons),
            message=message,
            history=list(self.history),
            **details,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutOrchestrator:
    """
    Stateless coordinator over a shopper's ``CartStore`` and the backing stores.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        coupons: CouponStore,
        orders: OrderStore,
        shipping_rule: Union[Money, ShippingRule] = 0,
        clock: Callable[[], datetime] = _utcnow,
        enforce_coupon_cap: bool = False,
    ):
        self._catalog = catalog
        self._coupons = coupons
        self._orders = orders
        self._shipping = shipping_rule
        self._clock = clock
        self._enforce_coupon_cap = enforce_coupon_cap

    async def checkout(
        self,
        cart: CartStore,
        coupon_code: Optional[str] = None,
        user_id: Optional[str] = None,
        destination: Optional[str] = None,
        expected: Optional[PricingResult] = None,
    ) -> CheckoutResult:
        """
        Re-validate ``cart`` against live data and place the order.

        Args:
            cart: The shopper's cart; corrected in place on rejection, cleared on success.
            coupon_code: Code the shopper entered, if any.
            user_id: Authenticated user id, or None for guest checkout.
            destination: Shipping zone passed to the shipping rule.
            expected: Pricing the shopper confirmed; any difference rejects.

        Returns:
            CheckoutResult in state COMPLETED (with order_id) or REJECTED.
        """
        attempt = _Attempt()
        code = normalize_code(coupon_code) or None
        logger.info("checkout: %s", fields(user_id=user_id, lines=cart.line_count, coupon=code))

        if cart.is_empty:
            return attempt.reject(RejectionCode.EMPTY_CART, message="Your cart is empty.")

        # --- VALIDATING -------------------------------------------------
        attempt.advance(CheckoutState.VALIDATING)
        try:
            line_issues = await self._revalidate_lines(cart)
            lines = cart.get_lines()
            pricing_outcome = None
            coupon = None
            if code:
                subtotal = compute_subtotal(lines)
                pricing_outcome, coupon = await evaluate_coupon(
                    self._coupons, code, lines, subtotal, user_id, self._clock()
                )
        except PersistenceError as e:
            logger.error("checkout: result=rejected reason=store_unavailable error=%s", e)
            return attempt.reject(RejectionCode.STORE_UNAVAILABLE, message="Store temporarily unavailable.")
        except Exception as e:
            logger.error(
                "checkout: result=rejected reason=store_unavailable error=%s", e, exc_info=True
            )
            return attempt.reject(RejectionCode.STORE_UNAVAILABLE, message="Store temporarily unavailable.")

        try:
            pricing = compute_totals(lines, pricing_outcome, self._shipping, destination)
        except Exception as e:
            logger.error("checkout: result=rejected reason=pricing_failed error=%s", e, exc_info=True)
            return attempt.reject(
                RejectionCode.PRICING_FAILED, message="We could not price your order. Please try again."
            )

        reasons: List[RejectionCode] = []
        coupon_issue = None
        if line_issues:
            reasons.append(RejectionCode.LINE_CHANGED)
        if isinstance(pricing_outcome, Invalid):
            reasons.append(RejectionCode.COUPON_INVALID)
            coupon_issue = CouponIssue(code, pricing_outcome.reason)
        if expected is not None and expected != pricing:
            reasons.append(RejectionCode.PRICING_CHANGED)
        if reasons or cart.is_empty:
            if cart.is_empty and RejectionCode.EMPTY_CART not in reasons:
                reasons.append(RejectionCode.EMPTY_CART)
            logger.info("checkout: %s", fields(
                result="rejected",
                reasons=",".join(r.value for r in reasons),
                line_issues=len(line_issues),
            ))
            return attempt.reject(
                *reasons,
                message="Your cart changed. Please review it before placing the order.",
                pricing=pricing,
                line_issues=line_issues,
                coupon_issue=coupon_issue,
            )

        # --- COMMITTING -------------------------------------------------
        attempt.advance(CheckoutState.COMMITTING)
        draft = OrderDraft(
            lines=[
                OrderLine(
                    variant_id=line.variant_id,
                    product_id=line.product_id,
                    sku=line.sku,
                    title=line.title,
                    unit_price=line.unit_price,
                    quantity=line.quantity,
                )
                for line in lines
            ],
            subtotal=pricing.subtotal,
            discount=pricing.discount,
            shipping_fee=pricing.shipping_fee,
            total=pricing.total,
            coupon_code=pricing.applied_coupon_code,
            coupon_id=coupon.id if isinstance(pricing_outcome, Valid) else None,
            user_id=user_id,
            destination=destination,
            coupon_max_uses=(
                coupon.max_uses
                if self._enforce_coupon_cap and isinstance(pricing_outcome, Valid)
                else None
            ),
        )
        try:
            order_id = await self._orders.create_order(draft)
        except StockError as e:
            # Stock fell below the line quantity between validation and the write
            cart.refresh_stock(e.variant_id, e.available)
            logger.info("checkout: result=rejected reason=stock_changed variant_id=%s", e.variant_id)
            return attempt.reject(
                RejectionCode.LINE_CHANGED,
                message="Your cart changed. Please review it before placing the order.",
                pricing=pricing,
                line_issues=[LineIssue.from_stock_error(e)],
            )
        except ValidationError as e:
            # Conditional insert refused: the cap was reached by a racing order
            logger.info("checkout: result=rejected reason=coupon_cap_reached code=%s", code)
            return attempt.reject(
                RejectionCode.COUPON_INVALID,
                message=str(e),
                pricing=pricing,
                coupon_issue=CouponIssue(code, InvalidReason.TOTAL_USES_EXCEEDED),
            )
        except Exception as e:
            logger.error("checkout: result=rejected reason=persistence_failed error=%s", e, exc_info=True)
            return attempt.reject(
                RejectionCode.PERSISTENCE_FAILED,
                message="We could not place your order. Please try again.",
                pricing=pricing,
            )

        if not order_id:
            return attempt.reject(
                RejectionCode.PERSISTENCE_FAILED,
                message="We could not place your order. Please try again.",
                pricing=pricing,
            )

        # --- COMPLETED --------------------------------------------------
        attempt.advance(CheckoutState.COMPLETED)
        cart.clear()
        logger.info("checkout: %s", fields(result="completed", order_id=order_id, total=pricing.total))
        return CheckoutResult(
            state=attempt.state,
            pricing=pricing,
            order_id=order_id,
            history=list(attempt.history),
        )

    async def _revalidate_lines(self, cart: CartStore) -> List[LineIssue]:
        """Re-read each variant, fixing the cart in place; return what changed."""
        issues: List[LineIssue] = []
        for line in cart.get_lines():
            try:
                variant = await self._catalog.get_variant(line.variant_id)
            except NotFoundError:
                cart.remove_item(line.variant_id)
                issues.append(LineIssue(line.variant_id, LineIssueCode.NOT_FOUND, requested=line.quantity, available=0))
                continue

            if variant.price != line.unit_price:
                issues.append(LineIssue(
                    line.variant_id, LineIssueCode.PRICE_CHANGED,
                    old_price=line.unit_price, new_price=variant.price,
                ))
            if line.quantity > variant.stock_qty:
                issues.append(LineIssue(
                    line.variant_id, LineIssueCode.STOCK_LIMITED,
                    requested=line.quantity, available=variant.stock_qty,
                ))
            cart.refresh_stock(line.variant_id, variant.stock_qty, unit_price=variant.price)
        return issues
