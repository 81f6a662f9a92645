"""Pytest configuration for storefront tests."""

import asyncio
import os
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from storefront.data.memory import InMemoryCatalogStore, InMemoryCouponStore, InMemoryOrderStore  # noqa: E402
from storefront.data.records import Coupon, Variant  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def run(coro):
    return asyncio.run(coro)


def make_variant(variant_id="v1", price=50000, stock=10, **kwargs):
    """Variant with a price in poisha (50000 = BDT 500.00)."""
    return Variant(
        id=variant_id,
        product_id=kwargs.pop("product_id", f"p-{variant_id}"),
        sku=kwargs.pop("sku", f"SKU-{variant_id}"),
        title=kwargs.pop("title", f"Product {variant_id}"),
        price=price,
        stock_qty=stock,
        **kwargs,
    )


def make_coupon(code="SAVE10", discount_type="percent", amount=10, **kwargs):
    return Coupon(code=code, discount_type=discount_type, amount=amount, **kwargs)


# ---------------------------------------------------------------------------
# Cart isolation: _CARTS is a module-level dict in storefront.api.server that
# persists across test modules. Clear it before and after every test.
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function", autouse=True)
def _isolate_carts():
    """Wipe in-memory cart store before and after every test."""
    from storefront.api.server import _CARTS  # noqa: PLC0415
    _CARTS.clear()
    yield
    _CARTS.clear()


@pytest.fixture
def orders():
    return InMemoryOrderStore()


@pytest.fixture
def coupons(orders):
    return InMemoryCouponStore(orders)


@pytest.fixture
def catalog():
    return InMemoryCatalogStore([
        make_variant("v1", price=50000, stock=10),
        make_variant("v2", price=120050, stock=3),
        make_variant("v3", price=9900, stock=0),
    ])
