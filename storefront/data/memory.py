"""
In-memory stores for tests and the local demo server.

Coupon usage is counted over the orders held by ``InMemoryOrderStore``, the
same derivation the SQL and REST backends run against the orders table.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from storefront.coupons.validator import find_coupon
from storefront.data.base import CatalogStore, CouponStore, OrderStore
from storefront.data.records import (
    NON_COUNTING_ORDER_STATUSES,
    Coupon,
    OrderDraft,
    StoredOrder,
    Variant,
)
from storefront.errors import NotFoundError, ValidationError
from storefront.utils.logger import get_logger

logger = get_logger("data.memory")


class InMemoryCatalogStore(CatalogStore):

    def __init__(self, variants: Iterable[Variant] = ()):
        self._variants: Dict[str, Variant] = {v.id: v for v in variants}

    def put(self, variant: Variant) -> None:
        self._variants[variant.id] = variant

    def set_stock(self, variant_id: str, stock_qty: int) -> None:
        variant = self._variants[variant_id]
        self._variants[variant_id] = Variant(
            id=variant.id,
            product_id=variant.product_id,
            sku=variant.sku,
            title=variant.title,
            price=variant.price,
            stock_qty=stock_qty,
            compare_at_price=variant.compare_at_price,
        )

    async def get_variant(self, variant_id: str) -> Variant:
        try:
            return self._variants[variant_id]
        except KeyError:
            raise NotFoundError("variant", variant_id)


class InMemoryOrderStore(OrderStore):

    def __init__(self):
        self.orders: List[StoredOrder] = []

    async def create_order(self, draft: OrderDraft) -> str:
        order_id = f"order-{uuid.uuid4().hex[:12]}"
        self.orders.append(StoredOrder(id=order_id, draft=draft))
        logger.info("memory_orders: method=create_order order_id=%s coupon=%s", order_id, draft.coupon_code)
        return order_id

    async def set_status(self, order_id: str, status: str) -> None:
        for order in self.orders:
            if order.id == order_id:
                order.status = status
                return
        raise NotFoundError("order", order_id)

    def counting_orders(self, coupon_id: str) -> List[StoredOrder]:
        return [
            o for o in self.orders
            if o.draft.coupon_id == coupon_id and o.status not in NON_COUNTING_ORDER_STATUSES
        ]


class InMemoryCouponStore(CouponStore):

    def __init__(self, orders: InMemoryOrderStore, coupons: Iterable[Coupon] = ()):
        self._orders = orders
        self._coupons: Dict[str, Coupon] = {}
        for coupon in coupons:
            self._store(coupon)

    def _store(self, coupon: Coupon) -> Coupon:
        now = datetime.now(timezone.utc)
        if coupon.id is None:
            coupon = coupon.with_changes(id=uuid.uuid4().hex)
        if coupon.created_at is None:
            coupon = coupon.with_changes(created_at=now)
        self._coupons[coupon.id] = coupon
        return coupon

    async def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        return find_coupon(self._coupons.values(), code)

    async def count_usage(self, coupon_id: str) -> int:
        return len(self._orders.counting_orders(coupon_id))

    async def count_usage_by_user(self, coupon_id: str, user_id: str) -> int:
        return sum(1 for o in self._orders.counting_orders(coupon_id) if o.draft.user_id == user_id)

    async def list_coupons(self) -> List[Coupon]:
        return sorted(self._coupons.values(), key=lambda c: c.created_at, reverse=True)

    async def get_coupon(self, coupon_id: str) -> Optional[Coupon]:
        return self._coupons.get(coupon_id)

    async def insert_coupon(self, coupon: Coupon) -> Coupon:
        if await self.get_coupon_by_code(coupon.code) is not None:
            raise ValidationError("DUPLICATE_CODE", f"Coupon code {coupon.code} already exists")
        return self._store(coupon.with_changes(id=None, created_at=None))

    async def update_coupon(self, coupon_id: str, coupon: Coupon) -> Coupon:
        existing = self._coupons.get(coupon_id)
        if existing is None:
            raise NotFoundError("coupon", coupon_id)
        clash = await self.get_coupon_by_code(coupon.code)
        if clash is not None and clash.id != coupon_id:
            raise ValidationError("DUPLICATE_CODE", f"Coupon code {coupon.code} already exists")
        updated = coupon.with_changes(
            id=coupon_id,
            created_at=existing.created_at,
            updated_at=datetime.now(timezone.utc),
        )
        self._coupons[coupon_id] = updated
        return updated

    async def delete_coupon(self, coupon_id: str) -> None:
        if self._coupons.pop(coupon_id, None) is None:
            raise NotFoundError("coupon", coupon_id)
