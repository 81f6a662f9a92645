"""
SQLAlchemy models for the tables the engine reads and writes.

Column names match the Supabase schema so the same database serves both the
REST and the direct-connection backends. Ids are stored as text so the models
also run on SQLite for local development and tests.
"""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(Text, nullable=False)

    variants = relationship("ProductVariant", back_populates="product")


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(String(36), primary_key=True, default=_new_id)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    sku = Column(String(100))
    price_bdt = Column(Numeric(12, 2), nullable=False)
    compare_at_bdt = Column(Numeric(12, 2), nullable=True)
    stock_qty = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="variants")

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "title": self.product.title if self.product else "",
            "price_bdt": self.price_bdt,
            "compare_at_bdt": self.compare_at_bdt,
            "stock_qty": self.stock_qty,
        }


class CouponRow(Base):
    __tablename__ = "coupons"

    id = Column(String(36), primary_key=True, default=_new_id)
    code = Column(String(64), nullable=False, unique=True)
    discount_type = Column(String(16), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    min_subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    max_uses = Column(Integer, nullable=True)
    max_uses_per_user = Column(Integer, nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def to_row(self) -> dict:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("orders_coupon_id_idx", "coupon_id"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=True, index=True)
    subtotal = Column(Numeric(12, 2), nullable=False)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_fee = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)
    coupon_id = Column(String(36), ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)
    coupon_code = Column(String(64), nullable=True)
    shipping_zone = Column(String(64), nullable=True)
    status = Column(String(32), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column(String(36), nullable=False)
    product_id = Column(String(36), nullable=True)
    sku = Column(String(100))
    title = Column(Text)
    unit_price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")
