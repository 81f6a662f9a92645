"""
API module for the storefront.

Provides REST endpoints for the storefront cart and the back-office coupon pages.
"""
from storefront.api.models import (
    AddItemRequest,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    CouponForm,
    CouponResponse,
    QuoteRequest,
    QuoteResponse,
    ShippingOptionsResponse,
)

__all__ = [
    "AddItemRequest",
    "CartResponse",
    "CheckoutRequest",
    "CheckoutResponse",
    "CouponForm",
    "CouponResponse",
    "QuoteRequest",
    "QuoteResponse",
    "ShippingOptionsResponse",
]
