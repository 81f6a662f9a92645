"""
Catalog, coupon and order stores over the Supabase REST API.

Usage counts are read-time aggregations over ``orders`` (exact count of
rows referencing the coupon), never a counter column on ``coupons``.

Order creation goes through the ``create_order_with_items`` RPC
(``supabase/migrations/0001_checkout.sql``) so the order row and its items are
inserted in one Postgres transaction; PostgREST cannot span two table
inserts otherwise.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from storefront.data.base import CatalogStore, CouponStore, OrderStore
from storefront.data.records import (
    NON_COUNTING_ORDER_STATUSES,
    Coupon,
    OrderDraft,
    Variant,
    normalize_code,
)
from storefront.errors import NotFoundError, PersistenceError, ValidationError
from storefront.utils.logger import get_logger
from storefront.utils.supabase_client import SupabaseClient

logger = get_logger("data.supabase_store")

_VARIANT_SELECT = "id, product_id, sku, price_bdt, compare_at_bdt, stock_qty, product:products(id, title)"
_COUNTING_STATUS_FILTER = f"not.in.({','.join(NON_COUNTING_ORDER_STATUSES)})"


class SupabaseCatalogStore(CatalogStore):

    def __init__(self, client: SupabaseClient):
        self._client = client

    async def get_variant(self, variant_id: str) -> Variant:
        logger.info("supabase_catalog: method=get_variant variant_id=%s", variant_id)
        rows = await self._client.select(
            "product_variants", filters={"id": variant_id}, select=_VARIANT_SELECT, limit=1
        )
        if not rows:
            logger.info("supabase_catalog: method=get_variant variant_id=%s result=not_found", variant_id)
            raise NotFoundError("variant", variant_id)
        return Variant.from_row(rows[0])


class SupabaseCouponStore(CouponStore):

    def __init__(self, client: SupabaseClient, minor_per_major: int = 100):
        self._client = client
        self._minor = minor_per_major

    async def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        normalized = normalize_code(code)
        logger.info("supabase_coupons: method=get_coupon_by_code code=%s", normalized)
        if not normalized:
            return None
        rows = await self._client.select("coupons", filters={"code": normalized}, limit=1)
        return Coupon.from_row(rows[0], self._minor) if rows else None

    async def count_usage(self, coupon_id: str) -> int:
        count = await self._client.count(
            "orders", filters={"coupon_id": coupon_id, "status": _COUNTING_STATUS_FILTER}
        )
        logger.info("supabase_coupons: method=count_usage coupon_id=%s count=%s", coupon_id, count)
        return count

    async def count_usage_by_user(self, coupon_id: str, user_id: str) -> int:
        count = await self._client.count(
            "orders",
            filters={"coupon_id": coupon_id, "user_id": user_id, "status": _COUNTING_STATUS_FILTER},
        )
        logger.info(
            "supabase_coupons: method=count_usage_by_user coupon_id=%s user_id=%s count=%s",
            coupon_id, user_id, count,
        )
        return count

    async def list_coupons(self) -> List[Coupon]:
        rows = await self._client.select("coupons", order="created_at.desc")
        return [Coupon.from_row(r, self._minor) for r in rows]

    async def get_coupon(self, coupon_id: str) -> Optional[Coupon]:
        rows = await self._client.select("coupons", filters={"id": coupon_id}, limit=1)
        return Coupon.from_row(rows[0], self._minor) if rows else None

    async def insert_coupon(self, coupon: Coupon) -> Coupon:
        if await self.get_coupon_by_code(coupon.code) is not None:
            raise ValidationError("DUPLICATE_CODE", f"Coupon code {coupon.code} already exists")
        row = await self._client.insert("coupons", coupon.to_row(self._minor))
        if not row:
            raise PersistenceError("insert on coupons returned no row")
        logger.info("supabase_coupons: method=insert_coupon code=%s result=success", coupon.code)
        return Coupon.from_row(row, self._minor)

    async def update_coupon(self, coupon_id: str, coupon: Coupon) -> Coupon:
        clash = await self.get_coupon_by_code(coupon.code)
        if clash is not None and clash.id != coupon_id:
            raise ValidationError("DUPLICATE_CODE", f"Coupon code {coupon.code} already exists")
        payload = coupon.to_row(self._minor)
        payload["updated_at"] = datetime.now(timezone.utc).isoformat()
        rows = await self._client.update("coupons", {"id": coupon_id}, payload)
        if not rows:
            raise NotFoundError("coupon", coupon_id)
        logger.info("supabase_coupons: method=update_coupon coupon_id=%s result=success", coupon_id)
        return Coupon.from_row(rows[0], self._minor)

    async def delete_coupon(self, coupon_id: str) -> None:
        rows = await self._client.delete("coupons", {"id": coupon_id})
        if not rows:
            raise NotFoundError("coupon", coupon_id)
        logger.info("supabase_coupons: method=delete_coupon coupon_id=%s result=success", coupon_id)


class SupabaseOrderStore(OrderStore):

    def __init__(self, client: SupabaseClient, minor_per_major: int = 100):
        self._client = client
        self._minor = minor_per_major

    async def create_order(self, draft: OrderDraft) -> str:
        logger.info(
            "supabase_orders: method=create_order user_id=%s lines=%s coupon=%s",
            draft.user_id, len(draft.lines), draft.coupon_code,
        )
        order_row = draft.order_row(order_id=None, minor_per_major=self._minor)
        order_row.pop("id")
        try:
            result = await self._client.rpc(
                "create_order_with_items",
                {
                    "p_order": order_row,
                    "p_items": draft.item_rows(order_id=None, minor_per_major=self._minor),
                    "p_max_uses": draft.coupon_max_uses,
                },
            )
        except PersistenceError as e:
            if "COUPON_CAP_REACHED" in str(e):
                raise ValidationError("TOTAL_USES_EXCEEDED", "Coupon usage cap reached") from e
            raise
        order_id = result.get("id") if isinstance(result, dict) else result
        if not order_id:
            logger.error("supabase_orders: method=create_order result=error error=no_order_id")
            raise PersistenceError("create_order_with_items returned no order id")
        logger.info("supabase_orders: method=create_order result=success order_id=%s", order_id)
        return str(order_id)
