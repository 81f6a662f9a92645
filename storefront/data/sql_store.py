"""
Catalog, coupon and order stores via a direct database connection (DATABASE_URL).

Bypasses Supabase RLS so the backend service role can read stock and write
orders. Same public interface as the Supabase REST stores. Sessions are
synchronous SQLAlchemy; each async method runs its session work in a worker
thread with ``asyncio.to_thread`` so the event loop keeps serving requests.

Coupon usage is ``COUNT(*)`` over orders referencing the coupon (cancelled
and refunded orders excluded). The order insert re-reads the ordered
variants' stock in the same transaction and raises ``StockError`` when a
line no longer fits. With ``enforce_cap`` it also locks the coupon row and
re-counts, so concurrent checkouts cannot both pass the cap.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import create_engine, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from storefront.data.base import CatalogStore, CouponStore, OrderStore
from storefront.data.models import Base, CouponRow, Order, OrderItem, ProductVariant
from storefront.data.records import (
    NON_COUNTING_ORDER_STATUSES,
    Coupon,
    OrderDraft,
    Variant,
    normalize_code,
)
from storefront.errors import NotFoundError, PersistenceError, StockError, ValidationError
from storefront.utils.logger import get_logger

logger = get_logger("data.sql_store")


def make_engine(db_url: str) -> Engine:
    """Create an engine; Postgres gets a small pool and a connect timeout."""
    if db_url.startswith("sqlite"):
        return create_engine(db_url)
    return create_engine(
        db_url,
        pool_pre_ping=True,
        pool_size=3,
        max_overflow=2,
        connect_args={"connect_timeout": 15},
    )


def create_schema(engine: Engine) -> None:
    """Create the tables (local development and tests; Supabase uses migrations)."""
    Base.metadata.create_all(engine)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.astimezone(timezone.utc)


class _SQLStore:

    def __init__(self, engine: Engine, minor_per_major: int = 100):
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        self._minor = minor_per_major

    def _session(self) -> Session:
        return self._sessions()


class SQLCatalogStore(_SQLStore, CatalogStore):

    def _load_variant(self, variant_id: str) -> Optional[dict]:
        try:
            with self._session() as db:
                row = db.query(ProductVariant).filter(ProductVariant.id == variant_id).first()
                return row.to_row() if row is not None else None
        except SQLAlchemyError as e:
            logger.error("sql_catalog: method=get_variant variant_id=%s error=%s", variant_id, e)
            raise PersistenceError(str(e)) from e

    async def get_variant(self, variant_id: str) -> Variant:
        logger.info("sql_catalog: method=get_variant variant_id=%s", variant_id)
        data = await asyncio.to_thread(self._load_variant, variant_id)
        if data is None:
            raise NotFoundError("variant", variant_id)
        return Variant.from_row(data)


class SQLCouponStore(_SQLStore, CouponStore):

    def _to_coupon(self, row: CouponRow) -> Coupon:
        return Coupon.from_row(row.to_row(), self._minor)

    def _apply(self, row: CouponRow, coupon: Coupon) -> None:
        payload = coupon.to_row(self._minor)
        row.code = payload["code"]
        row.discount_type = payload["discount_type"]
        row.amount = Decimal(payload["amount"])
        row.min_subtotal = Decimal(payload["min_subtotal"])
        row.max_uses = payload["max_uses"]
        row.max_uses_per_user = payload["max_uses_per_user"]
        row.starts_at = _utc(coupon.starts_at)
        row.ends_at = _utc(coupon.ends_at)
        row.is_active = payload["is_active"]

    def _count(self, coupon_id: str, user_id: Optional[str] = None) -> int:
        try:
            with self._session() as db:
                query = db.query(func.count(Order.id)).filter(
                    Order.coupon_id == coupon_id,
                    Order.status.notin_(NON_COUNTING_ORDER_STATUSES),
                )
                if user_id is not None:
                    query = query.filter(Order.user_id == user_id)
                return int(query.scalar() or 0)
        except SQLAlchemyError as e:
            logger.error("sql_coupons: method=count coupon_id=%s error=%s", coupon_id, e)
            raise PersistenceError(str(e)) from e

    def _find_by_code(self, code: str) -> Optional[Coupon]:
        try:
            with self._session() as db:
                row = db.query(CouponRow).filter(CouponRow.code == code).first()
                return self._to_coupon(row) if row is not None else None
        except SQLAlchemyError as e:
            logger.error("sql_coupons: method=get_coupon_by_code code=%s error=%s", code, e)
            raise PersistenceError(str(e)) from e

    def _list(self) -> List[Coupon]:
        try:
            with self._session() as db:
                rows = db.query(CouponRow).order_by(CouponRow.created_at.desc(), CouponRow.code).all()
                return [self._to_coupon(r) for r in rows]
        except SQLAlchemyError as e:
            logger.error("sql_coupons: method=list_coupons error=%s", e)
            raise PersistenceError(str(e)) from e

    def _get(self, coupon_id: str) -> Optional[Coupon]:
        try:
            with self._session() as db:
                row = db.get(CouponRow, coupon_id)
                return self._to_coupon(row) if row is not None else None
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    def _insert(self, coupon: Coupon) -> Coupon:
        try:
            with self._session() as db, db.begin():
                row = CouponRow()
                self._apply(row, coupon)
                db.add(row)
                db.flush()
                db.refresh(row)
                return self._to_coupon(row)
        except IntegrityError as e:
            raise ValidationError("DUPLICATE_CODE", f"Coupon code {coupon.code} already exists") from e
        except SQLAlchemyError as e:
            logger.error("sql_coupons: method=insert_coupon code=%s error=%s", coupon.code, e)
            raise PersistenceError(str(e)) from e

    def _update(self, coupon_id: str, coupon: Coupon) -> Coupon:
        try:
            with self._session() as db, db.begin():
                row = db.get(CouponRow, coupon_id)
                if row is None:
                    raise NotFoundError("coupon", coupon_id)
                self._apply(row, coupon)
                row.updated_at = datetime.now(timezone.utc)
                db.flush()
                db.refresh(row)
                return self._to_coupon(row)
        except IntegrityError as e:
            raise ValidationError("DUPLICATE_CODE", f"Coupon code {coupon.code} already exists") from e
        except SQLAlchemyError as e:
            logger.error("sql_coupons: method=update_coupon coupon_id=%s error=%s", coupon_id, e)
            raise PersistenceError(str(e)) from e

    def _delete(self, coupon_id: str) -> None:
        try:
            with self._session() as db, db.begin():
                row = db.get(CouponRow, coupon_id)
                if row is None:
                    raise NotFoundError("coupon", coupon_id)
                db.delete(row)
        except SQLAlchemyError as e:
            logger.error("sql_coupons: method=delete_coupon coupon_id=%s error=%s", coupon_id, e)
            raise PersistenceError(str(e)) from e

    async def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        normalized = normalize_code(code)
        logger.info("sql_coupons: method=get_coupon_by_code code=%s", normalized)
        return await asyncio.to_thread(self._find_by_code, normalized)

    async def count_usage(self, coupon_id: str) -> int:
        return await asyncio.to_thread(self._count, coupon_id)

    async def count_usage_by_user(self, coupon_id: str, user_id: str) -> int:
        return await asyncio.to_thread(self._count, coupon_id, user_id)

    async def list_coupons(self) -> List[Coupon]:
        return await asyncio.to_thread(self._list)

    async def get_coupon(self, coupon_id: str) -> Optional[Coupon]:
        return await asyncio.to_thread(self._get, coupon_id)

    async def insert_coupon(self, coupon: Coupon) -> Coupon:
        logger.info("sql_coupons: method=insert_coupon code=%s", coupon.code)
        return await asyncio.to_thread(self._insert, coupon)

    async def update_coupon(self, coupon_id: str, coupon: Coupon) -> Coupon:
        logger.info("sql_coupons: method=update_coupon coupon_id=%s", coupon_id)
        return await asyncio.to_thread(self._update, coupon_id, coupon)

    async def delete_coupon(self, coupon_id: str) -> None:
        logger.info("sql_coupons: method=delete_coupon coupon_id=%s", coupon_id)
        await asyncio.to_thread(self._delete, coupon_id)


class SQLOrderStore(_SQLStore, OrderStore):

    def __init__(self, engine: Engine, minor_per_major: int = 100, enforce_cap: bool = False):
        super().__init__(engine, minor_per_major)
        self._enforce_cap = enforce_cap

    def _check_stock(self, db: Session, draft: OrderDraft) -> None:
        ids = [line.variant_id for line in draft.lines]
        if not ids:
            return
        stock = dict(
            db.query(ProductVariant.id, ProductVariant.stock_qty)
            .filter(ProductVariant.id.in_(ids))
            .with_for_update()
            .all()
        )
        for line in draft.lines:
            available = stock.get(line.variant_id, 0)
            if line.quantity > available:
                raise StockError(line.variant_id, line.quantity, available)

    def _check_cap(self, db: Session, draft: OrderDraft) -> None:
        # Lock the coupon row so racing checkouts serialise on the count
        db.query(CouponRow).filter(CouponRow.id == draft.coupon_id).with_for_update().first()
        used = db.query(func.count(Order.id)).filter(
            Order.coupon_id == draft.coupon_id,
            Order.status.notin_(NON_COUNTING_ORDER_STATUSES),
        ).scalar() or 0
        if used >= draft.coupon_max_uses:
            raise ValidationError("TOTAL_USES_EXCEEDED", "Coupon usage cap reached")

    def _write_order(self, draft: OrderDraft) -> str:
        try:
            with self._session() as db, db.begin():
                self._check_stock(db, draft)
                if self._enforce_cap and draft.coupon_id and draft.coupon_max_uses is not None:
                    self._check_cap(db, draft)
                order_values = draft.order_row(order_id=None, minor_per_major=self._minor)
                order_values.pop("id")
                order = Order(**{
                    k: Decimal(v) if k in ("subtotal", "discount", "shipping_fee", "total") else v
                    for k, v in order_values.items()
                })
                for item in draft.item_rows(order_id=None, minor_per_major=self._minor):
                    item.pop("order_id")
                    item["unit_price"] = Decimal(item["unit_price"])
                    item["line_total"] = Decimal(item["line_total"])
                    order.items.append(OrderItem(**item))
                db.add(order)
                db.flush()
                return order.id
        except SQLAlchemyError as e:
            logger.error("sql_orders: method=create_order result=error error=%s", e)
            raise PersistenceError(str(e)) from e

    def _write_status(self, order_id: str, status: str) -> None:
        try:
            with self._session() as db, db.begin():
                order = db.get(Order, order_id)
                if order is None:
                    raise NotFoundError("order", order_id)
                order.status = status
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    async def create_order(self, draft: OrderDraft) -> str:
        logger.info(
            "sql_orders: method=create_order user_id=%s lines=%s coupon=%s",
            draft.user_id, len(draft.lines), draft.coupon_code,
        )
        order_id = await asyncio.to_thread(self._write_order, draft)
        logger.info("sql_orders: method=create_order result=success order_id=%s", order_id)
        return order_id

    async def set_status(self, order_id: str, status: str) -> None:
        """Move an order to a new status (cancelled/refunded orders stop counting as coupon usage)."""
        await asyncio.to_thread(self._write_status, order_id, status)
