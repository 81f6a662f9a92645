"""
Checkout orchestrator tests.

Covers the state machine, commit-time re-validation against live stock,
prices and coupons, the documented max-uses race, and persistence failures.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from conftest import NOW, make_coupon, make_variant, run
from storefront.cart.store import CartStore
from storefront.checkout.orchestrator import (
    CheckoutOrchestrator,
    CheckoutState,
    LineIssueCode,
    RejectionCode,
)
from storefront.coupons.validator import InvalidReason
from storefront.data.memory import InMemoryCouponStore, InMemoryOrderStore
from storefront.data.records import OrderDraft
from storefront.errors import PersistenceError, StockError, ValidationError
from storefront.pricing.calculator import PricingResult


def _orchestrator(catalog, coupons, orders, shipping=6000, **kwargs):
    return CheckoutOrchestrator(catalog, coupons, orders, shipping, clock=lambda: NOW, **kwargs)


def _cart(catalog, *items):
    cart = CartStore()
    for vid, qty in items:
        cart.add_item(run(catalog.get_variant(vid)), qty)
    return cart


class _PreRaceCouponStore(InMemoryCouponStore):
    """Usage read that returns the count seen before either racing order committed."""

    async def count_usage(self, coupon_id):
        return 0


class TestHappyPath:
    def test_completes_and_persists_order(self, catalog, coupons, orders):
        cart = _cart(catalog, ("v1", 2), ("v2", 1))
        result = run(_orchestrator(catalog, coupons, orders).checkout(cart, user_id="u1"))

        assert result.ok
        assert result.state == CheckoutState.COMPLETED
        assert result.history == [
            CheckoutState.DRAFT,
            CheckoutState.VALIDATING,
            CheckoutState.COMMITTING,
            CheckoutState.COMPLETED,
        ]
        assert result.pricing == PricingResult(
            subtotal=220050, discount=0, shipping_fee=6000, total=226050
        )
        assert len(orders.orders) == 1
        stored = orders.orders[0]
        assert stored.id == result.order_id
        assert stored.draft.total == 226050
        assert [line.quantity for line in stored.draft.lines] == [2, 1]
        assert cart.is_empty

    def test_coupon_recorded_on_order(self, catalog, coupons, orders):
        coupon = run(coupons.insert_coupon(make_coupon("SAVE10", max_uses=10)))
        cart = _cart(catalog, ("v1", 2))
        result = run(_orchestrator(catalog, coupons, orders).checkout(cart, coupon_code=" save10 ", user_id="u1"))

        assert result.ok
        assert result.pricing.discount == 10000
        assert result.pricing.applied_coupon_code == "SAVE10"
        draft = orders.orders[0].draft
        assert draft.coupon_code == "SAVE10"
        assert draft.coupon_id == coupon.id
        assert draft.coupon_max_uses is None
        assert run(coupons.count_usage(coupon.id)) == 1

    def test_matching_expected_pricing_passes(self, catalog, coupons, orders):
        cart = _cart(catalog, ("v1", 1))
        expected = PricingResult(subtotal=50000, discount=0, shipping_fee=6000, total=56000)
        result = run(_orchestrator(catalog, coupons, orders).checkout(cart, expected=expected))
        assert result.ok

    def test_shipping_rule_uses_destination(self, catalog, coupons, orders):
        from storefront.pricing.shipping import ZoneShippingRule

        rule = ZoneShippingRule({"inside_dhaka": 6000, "outside_dhaka": 12000}, "outside_dhaka")
        cart = _cart(catalog, ("v1", 1))
        result = run(_orchestrator(catalog, coupons, orders, shipping=rule).checkout(cart, destination="inside_dhaka"))
        assert result.pricing.shipping_fee == 6000
        assert orders.orders[0].draft.destination == "inside_dhaka"


class TestRejections:
    def test_empty_cart_rejected_before_store_calls(self, coupons, orders):
        catalog = AsyncMock()
        result = run(_orchestrator(catalog, coupons, orders).checkout(CartStore()))
        assert result.state == CheckoutState.REJECTED
        assert result.reasons == [RejectionCode.EMPTY_CART]
        assert result.history == [CheckoutState.DRAFT, CheckoutState.REJECTED]
        catalog.get_variant.assert_not_called()

    def test_stale_stock_is_clamped_and_rejected(self, catalog, coupons, orders):
        cart = _cart(catalog, ("v1", 5))
        catalog.set_stock("v1", 2)
        result = run(_orchestrator(catalog, coupons, orders).checkout(cart))

        assert result.state == CheckoutState.REJECTED
        assert RejectionCode.LINE_CHANGED in result.reasons
        issue = result.line_issues[0]
        assert issue.code == LineIssueCode.STOCK_LIMITED
        assert (issue.requested, issue.available) == (5, 2)
        # Cart corrected in place so the caller can re-render it
        assert cart.get_line("v1").quantity == 2
        assert result.pricing.subtotal == 100000
        assert orders.orders == []

    def test_second_attempt_after_clamp_succeeds(self, catalog, coupons, orders):
        cart = _cart(catalog, ("v1", 5))
        catalog.set_stock("v1", 2)
        orchestrator = _orchestrator(catalog, coupons, orders)
        assert not run(orchestrator.checkout(cart)).ok
        assert run(orchestrator.checkout(cart)).ok

    def test_sold_out_line_dropped(self, catalog, coupons, orders):
        cart = _cart(catalog, ("v1", 1), ("v2", 1))
        catalog.set_stock("v2", 0)
        result = run(_orchestrator(catalog, coupons, orders).checkout(cart))
        assert result.state == CheckoutState.REJECTED
        assert "v2" not in cart
        assert result.line_issues[0].available == 0

    def test_deleted_variant(self, catalog, coupons, orders):
        from storefront.data.memory import InMemoryCatalogStore

        cart = _cart(catalog, ("v1", 1))
        empty_catalog = InMemoryCatalogStore()
        result = run(_orchestrator(empty_catalog, coupons, orders).checkout(cart))
        assert result.line_issues[0].code == LineIssueCode.NOT_FOUND
        assert RejectionCode.EMPTY_CART in result.reasons
        assert cart.is_empty

    def test_price_change_rejected_not_substituted(self, catalog, coupons, orders):
        cart = _cart(catalog, ("v1", 1))
        catalog.put(make_variant("v1", price=55000, stock=10))
        result = run(_orchestrator(catalog, coupons, orders).checkout(cart))

        assert result.state == CheckoutState.REJECTED
        issue = result.line_issues[0]
        assert issue.code == LineIssueCode.PRICE_CHANGED
        assert (issue.old_price, issue.new_price) == (50000, 55000)
        assert cart.get_line("v1").unit_price == 55000
        assert orders.orders == []

    def test_expected_pricing_mismatch(self, catalog, coupons, orders):
        cart = _cart(catalog, ("v1", 1))
        stale = PricingResult(subtotal=50000, discount=5000, shipping_fee=6000, total=51000, applied_coupon_code="X")
        result = run(_orchestrator(catalog, coupons, orders).checkout(cart, expected=stale))
        assert result.reasons == [RejectionCode.PRICING_CHANGED]
        assert orders.orders == []

    def test_coupon_deactivated_mid_checkout(self, catalog, coupons, orders):
        coupon = run(coupons.insert_coupon(make_coupon("SAVE10")))
        cart = _cart(catalog, ("v1", 1))
        run(coupons.update_coupon(coupon.id, coupon.with_changes(is_active=False)))
        result = run(_orchestrator(catalog, coupons, orders).checkout(cart, coupon_code="SAVE10"))

        assert result.reasons == [RejectionCode.COUPON_INVALID]
        assert result.coupon_issue.reason == InvalidReason.INACTIVE
        assert result.coupon_issue.message
        assert result.pricing.discount == 0
        assert orders.orders == []

    def test_expired_coupon(self, catalog, coupons, orders):
        run(coupons.insert_coupon(make_coupon("OLD", ends_at=NOW - timedelta(minutes=1))))
        cart = _cart(catalog, ("v1", 1))
        result = run(_orchestrator(catalog, coupons, orders).checkout(cart, coupon_code="old"))
        assert result.coupon_issue.reason == InvalidReason.EXPIRED

    def test_all_issues_listed_together(self, catalog, coupons, orders):
        cart = _cart(catalog, ("v1", 5))
        catalog.set_stock("v1", 1)
        result = run(_orchestrator(catalog, coupons, orders).checkout(cart, coupon_code="NOPE"))
        assert result.reasons == [RejectionCode.LINE_CHANGED, RejectionCode.COUPON_INVALID]
        assert result.coupon_issue.reason == InvalidReason.NOT_FOUND


class TestUsageCap:
    def test_sequential_checkouts_respect_cap(self, catalog, coupons, orders):
        run(coupons.insert_coupon(make_coupon("ONCE", max_uses=1)))
        orchestrator = _orchestrator(catalog, coupons, orders)
        first = run(orchestrator.checkout(_cart(catalog, ("v1", 1)), coupon_code="ONCE", user_id="a"))
        second = run(orchestrator.checkout(_cart(catalog, ("v1", 1)), coupon_code="ONCE", user_id="b"))
        assert first.ok
        assert second.coupon_issue.reason == InvalidReason.TOTAL_USES_EXCEEDED
        assert len(orders.orders) == 1

    def test_race_without_conditional_insert_both_commit(self, catalog):
        """Two checkouts that both validated before either committed both succeed."""
        orders = InMemoryOrderStore()
        coupons = _PreRaceCouponStore(orders)
        run(coupons.insert_coupon(make_coupon("ONCE", max_uses=1)))
        orchestrator = _orchestrator(catalog, coupons, orders)
        a = run(orchestrator.checkout(_cart(catalog, ("v1", 1)), coupon_code="ONCE"))
        b = run(orchestrator.checkout(_cart(catalog, ("v1", 1)), coupon_code="ONCE"))
        assert a.ok and b.ok
        assert len(orders.orders) == 2

    def test_race_with_conditional_insert_rejects_loser(self, catalog, coupons):
        run(coupons.insert_coupon(make_coupon("ONCE", max_uses=1)))
        capped_orders = AsyncMock()
        capped_orders.create_order.side_effect = ValidationError("TOTAL_USES_EXCEEDED", "Coupon usage cap reached")
        orchestrator = _orchestrator(catalog, coupons, capped_orders, enforce_coupon_cap=True)
        cart = _cart(catalog, ("v1", 1))
        result = run(orchestrator.checkout(cart, coupon_code="ONCE"))

        assert result.state == CheckoutState.REJECTED
        assert result.reasons == [RejectionCode.COUPON_INVALID]
        assert result.coupon_issue.reason == InvalidReason.TOTAL_USES_EXCEEDED
        draft: OrderDraft = capped_orders.create_order.call_args.args[0]
        assert draft.coupon_max_uses == 1
        assert not cart.is_empty


class TestFailures:
    def test_order_write_failure(self, catalog, coupons):
        failing = AsyncMock()
        failing.create_order.side_effect = PersistenceError("connection reset")
        cart = _cart(catalog, ("v1", 1))
        result = run(_orchestrator(catalog, coupons, failing).checkout(cart))

        assert result.state == CheckoutState.REJECTED
        assert result.reasons == [RejectionCode.PERSISTENCE_FAILED]
        assert result.order_id is None
        assert result.history[-2:] == [CheckoutState.COMMITTING, CheckoutState.REJECTED]
        assert not cart.is_empty

    def test_unexpected_error_never_escapes(self, catalog, coupons):
        failing = AsyncMock()
        failing.create_order.side_effect = RuntimeError("boom")
        result = run(_orchestrator(catalog, coupons, failing).checkout(_cart(catalog, ("v1", 1))))
        assert result.reasons == [RejectionCode.PERSISTENCE_FAILED]

    def test_missing_order_id_is_failure(self, catalog, coupons):
        silent = AsyncMock()
        silent.create_order.return_value = None
        result = run(_orchestrator(catalog, coupons, silent).checkout(_cart(catalog, ("v1", 1))))
        assert result.reasons == [RejectionCode.PERSISTENCE_FAILED]

    def test_catalog_unavailable(self, catalog, coupons, orders):
        cart = _cart(catalog, ("v1", 1))
        down = AsyncMock()
        down.get_variant.side_effect = PersistenceError("timeout")
        result = run(_orchestrator(down, coupons, orders).checkout(cart))
        assert result.reasons == [RejectionCode.STORE_UNAVAILABLE]
        assert result.history == [CheckoutState.DRAFT, CheckoutState.VALIDATING, CheckoutState.REJECTED]

    def test_coupon_store_unavailable(self, catalog, orders):
        down = AsyncMock()
        down.get_coupon_by_code.side_effect = PersistenceError("timeout")
        result = run(_orchestrator(catalog, down, orders).checkout(_cart(catalog, ("v1", 1)), coupon_code="X"))
        assert result.reasons == [RejectionCode.STORE_UNAVAILABLE]
        assert orders.orders == []


@pytest.mark.parametrize("qty", [1, 3, 10])
def test_total_never_below_shipping(catalog, coupons, orders, qty):
    run(coupons.insert_coupon(make_coupon("ALL", "percent", 100)))
    cart = _cart(catalog, ("v1", qty))
    result = run(_orchestrator(catalog, coupons, orders).checkout(cart, coupon_code="ALL"))
    assert result.pricing.total == result.pricing.shipping_fee == 6000

    def test_malformed_catalog_row_never_escapes(self, catalog, coupons, orders):
        cart = _cart(catalog, ("v1", 1))
        broken = AsyncMock()
        broken.get_variant.side_effect = ValueError("stock_qty must be >= 0")
        result = run(_orchestrator(broken, coupons, orders).checkout(cart))
        assert result.reasons == [RejectionCode.STORE_UNAVAILABLE]
        assert result.history == [CheckoutState.DRAFT, CheckoutState.VALIDATING, CheckoutState.REJECTED]
        assert orders.orders == []

    def test_coupon_store_error_never_escapes(self, catalog, orders):
        broken = AsyncMock()
        broken.get_coupon_by_code.side_effect = RuntimeError("unexpected payload")
        result = run(_orchestrator(catalog, broken, orders).checkout(_cart(catalog, ("v1", 1)), coupon_code="X"))
        assert result.reasons == [RejectionCode.STORE_UNAVAILABLE]
        assert orders.orders == []

    def test_shipping_rule_returning_float(self, catalog, coupons, orders):
        cart = _cart(catalog, ("v1", 1))
        result = run(_orchestrator(catalog, coupons, orders, lambda subtotal, destination: 60.0).checkout(cart))
        assert result.state == CheckoutState.REJECTED
        assert result.reasons == [RejectionCode.PRICING_FAILED]
        assert result.pricing is None
        assert not cart.is_empty
        assert orders.orders == []

    def test_shipping_rule_raising(self, catalog, coupons, orders):
        def rule(subtotal, destination):
            raise KeyError(destination)

        result = run(_orchestrator(catalog, coupons, orders, rule).checkout(_cart(catalog, ("v1", 1)), destination="mars"))
        assert result.reasons == [RejectionCode.PRICING_FAILED]
        assert orders.orders == []


class TestCommitTimeStock:
    def test_stock_error_from_order_store_clamps_cart(self, catalog, coupons):
        cart = _cart(catalog, ("v1", 3))
        racing = AsyncMock()
        racing.create_order.side_effect = StockError("v1", 3, 1)
        result = run(_orchestrator(catalog, coupons, racing).checkout(cart))

        assert result.reasons == [RejectionCode.LINE_CHANGED]
        assert result.history[-2:] == [CheckoutState.COMMITTING, CheckoutState.REJECTED]
        issue = result.line_issues[0]
        assert (issue.code, issue.requested, issue.available) == (LineIssueCode.STOCK_LIMITED, 3, 1)
        assert cart.get_line("v1").quantity == 1
