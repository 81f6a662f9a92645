"""HTTP routes via TestClient, backed by in-memory stores."""

import pytest
from fastapi.testclient import TestClient

from conftest import make_coupon, make_variant, run
from storefront.api import server
from storefront.api.server import _CARTS, app
from storefront.data.factory import in_memory_stores

SUPER = {"X-Admin-Roles": "super_admin"}
MANAGER = {"X-Admin-Roles": "order_manager"}


@pytest.fixture
def stores():
    s = in_memory_stores()
    s.catalog.put(make_variant("v1", price=50000, stock=5))
    s.catalog.put(make_variant("v2", price=120050, stock=1))
    server.set_app_stores(s)
    yield s
    server.set_app_stores(None)


@pytest.fixture
def client(stores):
    return TestClient(app)


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "online"
        assert data["backend"] == "memory"


class TestShippingOptions:
    def test_zone_options(self, client):
        data = client.get("/shipping/options").json()
        assert data["mode"] == "zone"
        assert data["options"] == [
            {"zone": "inside_dhaka", "fee": 6000, "fee_display": "BDT 60.00"},
            {"zone": "outside_dhaka", "fee": 12000, "fee_display": "BDT 120.00"},
        ]


class TestCartRoutes:
    def test_unknown_session_is_empty(self, client):
        data = client.get("/cart/s1").json()
        assert data["lines"] == []
        assert data["subtotal"] == 0

    def test_add_update_remove(self, client):
        resp = client.post("/cart/s1/items", json={"variant_id": "v1", "quantity": 2})
        assert resp.status_code == 200
        assert resp.json()["subtotal"] == 100000

        data = client.patch("/cart/s1/items/v1", json={"quantity": 9}).json()
        assert data["lines"][0]["quantity"] == 5
        assert data["stock_limited"] == {"variant_id": "v1", "requested": 9, "available": 5}

        data = client.delete("/cart/s1/items/v1").json()
        assert data["lines"] == []
        assert client.delete("/cart/s1/items/v1").status_code == 200

    def test_add_clamped(self, client):
        data = client.post("/cart/s1/items", json={"variant_id": "v2", "quantity": 3}).json()
        assert data["item_count"] == 1
        assert data["stock_limited"]["available"] == 1

    def test_add_unknown_variant(self, client):
        resp = client.post("/cart/s1/items", json={"variant_id": "nope", "quantity": 1})
        assert resp.status_code == 404

    def test_sessions_are_isolated(self, client):
        client.post("/cart/a/items", json={"variant_id": "v1"})
        assert client.get("/cart/b").json()["lines"] == []
        assert set(_CARTS) == {"a"}

    def test_reads_do_not_store_carts(self, client):
        for sid in ("x1", "x2", "x3"):
            client.get(f"/cart/{sid}")
            client.delete(f"/cart/{sid}/items/v1")
            client.post(f"/cart/{sid}/quote", json={})
            client.post(f"/cart/{sid}/checkout", json={})
        assert _CARTS == {}

    def test_emptied_cart_is_released(self, client):
        client.post("/cart/s1/items", json={"variant_id": "v1"})
        client.patch("/cart/s1/items/v1", json={"quantity": 0})
        assert "s1" not in _CARTS

    def test_subtotal_display(self, client):
        data = client.post("/cart/s1/items", json={"variant_id": "v2", "quantity": 1}).json()
        assert data["subtotal_display"] == "BDT 1,200.50"


class TestQuoteAndCheckout:
    def test_quote_with_coupon(self, client, stores):
        run(stores.coupons.insert_coupon(make_coupon("SAVE10")))
        client.post("/cart/s1/items", json={"variant_id": "v1", "quantity": 2})
        data = client.post("/cart/s1/quote", json={"coupon_code": "save10", "destination": "inside_dhaka"}).json()
        assert data["pricing"] == {
            "subtotal": 100000,
            "discount": 10000,
            "shipping_fee": 6000,
            "total": 96000,
            "applied_coupon_code": "SAVE10",
        }
        assert data["coupon_error"] is None

    def test_quote_invalid_coupon(self, client):
        client.post("/cart/s1/items", json={"variant_id": "v1"})
        data = client.post("/cart/s1/quote", json={"coupon_code": "NOPE"}).json()
        assert data["coupon_reason"] == "NOT_FOUND"
        assert data["coupon_error"]
        assert data["pricing"]["shipping_fee"] == 12000

    def test_checkout_completes(self, client, stores):
        client.post("/cart/s1/items", json={"variant_id": "v1", "quantity": 1})
        quote = client.post("/cart/s1/quote", json={"destination": "inside_dhaka"}).json()["pricing"]
        data = client.post(
            "/cart/s1/checkout", json={"destination": "inside_dhaka", "user_id": "u1", "expected": quote}
        ).json()
        assert data["state"] == "completed"
        assert data["order_id"]
        assert data["cart"] is None
        assert len(stores.orders.orders) == 1
        assert client.get("/cart/s1").json()["lines"] == []

    def test_checkout_rejected_on_stale_stock(self, client, stores):
        client.post("/cart/s1/items", json={"variant_id": "v1", "quantity": 5})
        stores.catalog.set_stock("v1", 2)
        data = client.post("/cart/s1/checkout", json={}).json()
        assert data["state"] == "rejected"
        assert data["reasons"] == ["LINE_CHANGED"]
        assert data["line_issues"][0]["code"] == "STOCK_LIMITED"
        assert data["cart"]["lines"][0]["quantity"] == 2
        assert stores.orders.orders == []

    def test_checkout_empty_cart(self, client):
        data = client.post("/cart/s1/checkout", json={}).json()
        assert data["reasons"] == ["EMPTY_CART"]

    def test_checkout_coupon_issue(self, client, stores):
        run(stores.coupons.insert_coupon(make_coupon("OFF", is_active=False)))
        client.post("/cart/s1/items", json={"variant_id": "v1"})
        data = client.post("/cart/s1/checkout", json={"coupon_code": "OFF"}).json()
        assert data["coupon_issue"]["reason"] == "INACTIVE"
        assert data["coupon_issue"]["message"]


class TestAdminRoutes:
    def _create(self, client, **overrides):
        form = {"code": "save10", "discount_type": "percent", "amount": 10}
        form.update(overrides)
        return client.post("/admin/coupons", json=form, headers=MANAGER)

    def test_create_and_list(self, client):
        resp = self._create(client)
        assert resp.status_code == 201
        created = resp.json()
        assert created["code"] == "SAVE10"
        assert created["is_live"] is True

        listing = client.get("/admin/coupons", params={"search": "save"}, headers=MANAGER).json()
        assert listing["total"] == 1
        assert listing["coupons"][0]["usage_count"] == 0

    def test_fixed_amount_in_major_units(self, client):
        created = self._create(client, code="FLAT", discount_type="fixed", amount=150.5).json()
        assert created["amount"] == "150.50"

    def test_requires_role(self, client):
        assert client.get("/admin/coupons").status_code == 403
        assert self._create(client).status_code == 201
        assert client.post("/admin/coupons", json={"code": "X", "amount": 1}).status_code == 403

    def test_validation_and_duplicate_errors(self, client):
        assert self._create(client, amount=150).status_code == 400
        assert self._create(client).status_code == 201
        resp = self._create(client, code="SAVE 10")
        assert resp.status_code == 409
        assert resp.json()["detail"]["reason"] == "DUPLICATE_CODE"

    def test_update_toggle_duplicate_delete(self, client):
        coupon_id = self._create(client).json()["id"]

        updated = client.patch(
            f"/admin/coupons/{coupon_id}",
            json={"code": "SAVE15", "amount": 15, "max_uses": 100},
            headers=MANAGER,
        ).json()
        assert updated["code"] == "SAVE15"
        assert updated["max_uses"] == 100

        toggled = client.post(f"/admin/coupons/{coupon_id}/toggle", headers=MANAGER).json()
        assert toggled["is_active"] is False

        copy = client.post(f"/admin/coupons/{coupon_id}/duplicate", headers=MANAGER)
        assert copy.status_code == 201
        assert copy.json()["code"] == "SAVE15_COPY_1"

        assert client.delete(f"/admin/coupons/{coupon_id}", headers=MANAGER).status_code == 403
        assert client.delete(f"/admin/coupons/{coupon_id}", headers=SUPER).status_code == 200
        assert client.delete(f"/admin/coupons/{coupon_id}", headers=SUPER).status_code == 404

    def test_unknown_coupon(self, client):
        assert client.post("/admin/coupons/missing/toggle", headers=MANAGER).status_code == 404
