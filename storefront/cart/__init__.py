"""
Cart module: line-item state owned by a single shopper session.
"""
from storefront.cart.store import CartChange, CartLine, CartStore, StockLimited

__all__ = [
    "CartChange",
    "CartLine",
    "CartStore",
    "StockLimited",
]
