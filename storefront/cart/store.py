"""
In-memory cart: selected variants mapped to quantities, clamped to stock.

Stock is a soft ceiling. Asking for more than is available never raises;
the quantity is clamped and the returned ``CartChange`` carries a
``StockLimited`` notice so the caller can show it.

The store is single-owner (one cart per session) and does no locking.
Persisting it across sessions is layered on top via ``to_records`` /
``from_records``.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from storefront.data.records import Variant
from storefront.pricing.money import Money, ensure_money, line_total
from storefront.utils.logger import get_logger

logger = get_logger("cart.store")


@dataclass(frozen=True)
class CartLine:
    variant_id: str
    product_id: str
    sku: str
    title: str
    unit_price: Money
    quantity: int
    stock_at_add: int

    def __post_init__(self):
        ensure_money(self.unit_price, "unit_price")
        ensure_money(self.stock_at_add, "stock_at_add")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity <= 0:
            raise ValueError(f"quantity must be a positive integer, got {self.quantity!r}")

    @property
    def line_total(self) -> Money:
        return line_total(self.unit_price, self.quantity)


@dataclass(frozen=True)
class StockLimited:
    """Requested quantity was clamped to the available stock."""
    variant_id: str
    requested: int
    available: int


@dataclass(frozen=True)
class CartChange:
    """Result of a cart mutation."""
    variant_id: str
    quantity: int                       # quantity now in the cart (0 = no line)
    stock_limited: Optional[StockLimited] = None

    @property
    def removed(self) -> bool:
        return self.quantity == 0


class CartStore:
    """Ordered mapping of variant id to cart line."""

    def __init__(self, lines: Iterable[CartLine] = ()):
        self._lines: Dict[str, CartLine] = {}
        for line in lines:
            if line.variant_id in self._lines:
                raise ValueError(f"duplicate cart line for variant {line.variant_id}")
            self._lines[line.variant_id] = line

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_item(self, variant: Variant, qty: int = 1) -> CartChange:
        """Add ``qty`` of ``variant``, merging with an existing line and clamping to stock."""
        existing = self._lines.get(variant.id)
        current = existing.quantity if existing else 0
        if qty <= 0:
            return CartChange(variant.id, current)

        requested = current + qty
        available = variant.stock_qty
        new_qty = min(requested, available)
        notice = StockLimited(variant.id, requested, available) if new_qty < requested else None

        if new_qty <= 0:
            # Out of stock: no line is created, an existing one is dropped
            self._lines.pop(variant.id, None)
        elif existing:
            # Refresh price/title from the variant the shopper is looking at
            self._lines[variant.id] = replace(
                existing,
                quantity=new_qty,
                unit_price=variant.price,
                title=variant.title,
                stock_at_add=available,
            )
        else:
            self._lines[variant.id] = CartLine(
                variant_id=variant.id,
                product_id=variant.product_id,
                sku=variant.sku,
                title=variant.title,
                unit_price=variant.price,
                quantity=new_qty,
                stock_at_add=available,
            )

        logger.info(
            "cart: method=add_item variant_id=%s requested=%s quantity=%s stock_limited=%s",
            variant.id, requested, max(new_qty, 0), notice is not None,
        )
        return CartChange(variant.id, max(new_qty, 0), notice)

    def update_quantity(self, variant_id: str, qty: int) -> CartChange:
        """Set a line's quantity; ``qty <= 0`` removes it, more than stock clamps."""
        existing = self._lines.get(variant_id)
        if existing is None:
            return CartChange(variant_id, 0)
        if qty <= 0:
            self.remove_item(variant_id)
            return CartChange(variant_id, 0)

        available = existing.stock_at_add
        new_qty = min(qty, available)
        notice = StockLimited(variant_id, qty, available) if new_qty < qty else None
        if new_qty <= 0:
            self.remove_item(variant_id)
            return CartChange(variant_id, 0, notice)

        self._lines[variant_id] = replace(existing, quantity=new_qty)
        logger.info(
            "cart: method=update_quantity variant_id=%s requested=%s quantity=%s",
            variant_id, qty, new_qty,
        )
        return CartChange(variant_id, new_qty, notice)

    def refresh_stock(self, variant_id: str, stock_qty: int, unit_price: Optional[Money] = None) -> CartChange:
        """Re-clamp a line against freshly read stock (and price, when given)."""
        existing = self._lines.get(variant_id)
        if existing is None:
            return CartChange(variant_id, 0)
        ensure_money(stock_qty, "stock_qty")
        price = existing.unit_price if unit_price is None else unit_price
        if existing.quantity <= stock_qty:
            self._lines[variant_id] = replace(existing, stock_at_add=stock_qty, unit_price=price)
            return CartChange(variant_id, existing.quantity)

        notice = StockLimited(variant_id, existing.quantity, stock_qty)
        if stock_qty == 0:
            self.remove_item(variant_id)
            return CartChange(variant_id, 0, notice)
        self._lines[variant_id] = replace(
            existing, quantity=stock_qty, stock_at_add=stock_qty, unit_price=price
        )
        return CartChange(variant_id, stock_qty, notice)

    def remove_item(self, variant_id: str) -> None:
        """Remove a line. Removing an absent variant is a no-op."""
        if self._lines.pop(variant_id, None) is not None:
            logger.info("cart: method=remove_item variant_id=%s", variant_id)

    def clear(self) -> None:
        self._lines.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_lines(self) -> Tuple[CartLine, ...]:
        return tuple(self._lines.values())

    def get_line(self, variant_id: str) -> Optional[CartLine]:
        return self._lines.get(variant_id)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def line_count(self) -> int:
        return len(self._lines)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, variant_id: object) -> bool:
        return variant_id in self._lines

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_records(self) -> List[Dict[str, Any]]:
        return [
            {
                "variant_id": line.variant_id,
                "product_id": line.product_id,
                "sku": line.sku,
                "title": line.title,
                "unit_price": line.unit_price,
                "quantity": line.quantity,
                "stock_at_add": line.stock_at_add,
            }
            for line in self._lines.values()
        ]

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "CartStore":
        """Rebuild a cart from ``to_records`` output, merging repeated variants."""
        store = cls()
        for rec in records:
            qty = int(rec.get("quantity") or 0)
            if qty <= 0:
                continue
            variant_id = str(rec["variant_id"])
            stock = int(rec.get("stock_at_add") or 0)
            existing = store._lines.get(variant_id)
            if existing:
                qty = existing.quantity + qty
            qty = min(qty, stock)
            if qty <= 0:
                continue
            store._lines[variant_id] = CartLine(
                variant_id=variant_id,
                product_id=str(rec.get("product_id") or ""),
                sku=rec.get("sku") or "N/A",
                title=rec.get("title") or "",
                unit_price=int(rec.get("unit_price") or 0),
                quantity=qty,
                stock_at_add=stock,
            )
        return store
