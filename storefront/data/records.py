"""
Plain records exchanged with the catalog, coupon and order stores.

Supabase tables keep prices in major units (``price_bdt`` numeric); every
record converts to integer minor units on the way in and back on the way out,
so nothing past this module sees a float or Decimal price.

Tables (names follow the storefront schema):
  product_variants(id, product_id, sku, price_bdt, compare_at_bdt, stock_qty)
  products(id, title)
  coupons(id, code, discount_type, amount, min_subtotal, max_uses,
          max_uses_per_user, starts_at, ends_at, is_active, created_at, updated_at)
  orders(id, user_id, subtotal, discount, shipping_fee, total,
         coupon_id, coupon_code, status, created_at)
  order_items(id, order_id, variant_id, product_id, sku, title,
              unit_price, quantity, line_total)
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from storefront.pricing.money import Money, ensure_money, to_major_units, to_minor_units

# Orders in these states no longer count towards coupon usage.
NON_COUNTING_ORDER_STATUSES = ("cancelled", "refunded")

_WHITESPACE = re.compile(r"\s+")


def normalize_code(code: Optional[str]) -> str:
    """Canonical coupon code: all whitespace removed, uppercase."""
    return _WHITESPACE.sub("", code or "").upper()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed); naive values are UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return parse_timestamp(value).isoformat()


def optional_limit(value: Any) -> Optional[int]:
    # The admin form stores 0/blank as "unlimited"
    if value in (None, "", 0):
        return None
    return int(value)


@dataclass(frozen=True)
class Variant:
    """A purchasable SKU as returned by the catalog store."""
    id: str
    product_id: str
    sku: str
    title: str
    price: Money
    stock_qty: int
    compare_at_price: Optional[Money] = None

    def __post_init__(self):
        ensure_money(self.price, "price")
        ensure_money(self.stock_qty, "stock_qty")
        if self.compare_at_price is not None:
            ensure_money(self.compare_at_price, "compare_at_price")

    @property
    def on_sale(self) -> bool:
        return self.compare_at_price is not None and self.compare_at_price > self.price

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Variant":
        """Build from a ``product_variants`` row (optionally joined with ``products``)."""
        product = row.get("product") or {}
        compare_at = row.get("compare_at_bdt")
        return cls(
            id=str(row["id"]),
            product_id=str(row.get("product_id") or product.get("id") or ""),
            sku=row.get("sku") or "N/A",
            title=row.get("title") or product.get("title") or "",
            price=to_minor_units(row.get("price_bdt") or 0),
            stock_qty=int(row.get("stock_qty") or 0),
            compare_at_price=to_minor_units(compare_at) if compare_at is not None else None,
        )


class DiscountType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


@dataclass(frozen=True)
class Coupon:
    """
    A promotional code as configured in the back-office.

    ``amount`` is a percentage (0, 100] for percent coupons and a Money value
    for fixed coupons. Usage is never stored here; it is counted from orders.
    """
    code: str
    discount_type: DiscountType
    amount: Any
    id: Optional[str] = None
    min_subtotal: Money = 0
    max_uses: Optional[int] = None
    max_uses_per_user: Optional[int] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "code", normalize_code(self.code))
        object.__setattr__(self, "discount_type", DiscountType(self.discount_type))
        object.__setattr__(self, "starts_at", parse_timestamp(self.starts_at))
        object.__setattr__(self, "ends_at", parse_timestamp(self.ends_at))

    def with_changes(self, **changes) -> "Coupon":
        return replace(self, **changes)

    @classmethod
    def from_row(cls, row: Dict[str, Any], minor_per_major: int = 100) -> "Coupon":
        dtype = DiscountType(row.get("discount_type") or "fixed")
        raw_amount = row.get("amount") or 0
        if dtype == DiscountType.FIXED:
            amount = to_minor_units(raw_amount, minor_per_major)
        else:
            amount = Decimal(str(raw_amount))
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            code=row.get("code") or "",
            discount_type=dtype,
            amount=amount,
            min_subtotal=to_minor_units(row.get("min_subtotal") or 0, minor_per_major),
            max_uses=optional_limit(row.get("max_uses")),
            max_uses_per_user=optional_limit(row.get("max_uses_per_user")),
            starts_at=row.get("starts_at"),
            ends_at=row.get("ends_at"),
            is_active=bool(row.get("is_active", True)),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def to_row(self, minor_per_major: int = 100) -> Dict[str, Any]:
        """Row payload for insert/update (``id`` and timestamps left to the store)."""
        if self.discount_type == DiscountType.FIXED:
            amount = str(to_major_units(self.amount, minor_per_major))
        else:
            amount = str(self.amount)
        return {
            "code": self.code,
            "discount_type": self.discount_type.value,
            "amount": amount,
            "min_subtotal": str(to_major_units(self.min_subtotal, minor_per_major)),
            "max_uses": self.max_uses,
            "max_uses_per_user": self.max_uses_per_user,
            "starts_at": format_timestamp(self.starts_at),
            "ends_at": format_timestamp(self.ends_at),
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class OrderLine:
    variant_id: str
    product_id: str
    sku: str
    title: str
    unit_price: Money
    quantity: int

    @property
    def line_total(self) -> Money:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class OrderDraft:
    """Everything the order store needs to persist one order atomically."""
    lines: List[OrderLine]
    subtotal: Money
    discount: Money
    shipping_fee: Money
    total: Money
    coupon_code: Optional[str] = None
    coupon_id: Optional[str] = None
    user_id: Optional[str] = None
    destination: Optional[str] = None
    coupon_max_uses: Optional[int] = None

    def order_row(self, order_id: str, minor_per_major: int = 100) -> Dict[str, Any]:
        return {
            "id": order_id,
            "user_id": self.user_id,
            "subtotal": str(to_major_units(self.subtotal, minor_per_major)),
            "discount": str(to_major_units(self.discount, minor_per_major)),
            "shipping_fee": str(to_major_units(self.shipping_fee, minor_per_major)),
            "total": str(to_major_units(self.total, minor_per_major)),
            "coupon_id": self.coupon_id,
            "coupon_code": self.coupon_code,
            "shipping_zone": self.destination,
            "status": "pending",
        }

    def item_rows(self, order_id: str, minor_per_major: int = 100) -> List[Dict[str, Any]]:
        return [
            {
                "order_id": order_id,
                "variant_id": line.variant_id,
                "product_id": line.product_id,
                "sku": line.sku,
                "title": line.title,
                "unit_price": str(to_major_units(line.unit_price, minor_per_major)),
                "quantity": line.quantity,
                "line_total": str(to_major_units(line.line_total, minor_per_major)),
            }
            for line in self.lines
        ]


@dataclass
class StoredOrder:
    """An order as held by the in-memory store."""
    id: str
    draft: OrderDraft
    status: str = "pending"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
