"""
Pydantic models for storefront API requests and responses.

Money fields are integer minor units (poisha); coupon admin forms take major
units, matching what the back-office types in.
"""
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    backend: str
    config: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Cart
# ============================================================================

class AddItemRequest(BaseModel):
    """Request model for adding a variant to the cart."""
    variant_id: str = Field(description="Product variant ID")
    quantity: int = Field(default=1, description="Quantity to add (clamped to stock)")


class UpdateQuantityRequest(BaseModel):
    quantity: int = Field(description="New quantity; 0 or less removes the line")


class CartLineModel(BaseModel):
    variant_id: str
    product_id: str
    sku: str
    title: str
    unit_price: int
    quantity: int
    line_total: int
    stock_at_add: int


class StockLimitedModel(BaseModel):
    variant_id: str
    requested: int
    available: int


class CartResponse(BaseModel):
    """Response model for cart reads and mutations."""
    session_id: str
    lines: List[CartLineModel] = Field(default_factory=list)
    item_count: int = 0
    subtotal: int = 0
    subtotal_display: str = ""
    currency: str = "BDT"
    stock_limited: Optional[StockLimitedModel] = Field(
        default=None, description="Set when the last change was clamped to available stock"
    )


# ============================================================================
# Pricing / checkout
# ============================================================================

class PricingModel(BaseModel):
    subtotal: int
    discount: int
    shipping_fee: int
    total: int
    applied_coupon_code: Optional[str] = None


class ShippingOptionModel(BaseModel):
    zone: str
    fee: int
    fee_display: str


class ShippingOptionsResponse(BaseModel):
    """Delivery options for the checkout zone picker."""
    mode: str
    currency: str
    free_over: Optional[int] = None
    options: List[ShippingOptionModel] = Field(default_factory=list)


class QuoteRequest(BaseModel):
    coupon_code: Optional[str] = Field(default=None, description="Coupon code as entered")
    user_id: Optional[str] = Field(default=None, description="Authenticated user id (None for guests)")
    destination: Optional[str] = Field(default=None, description="Shipping zone, e.g. inside_dhaka")


class QuoteResponse(BaseModel):
    session_id: str
    pricing: PricingModel
    currency: str = "BDT"
    coupon_reason: Optional[str] = None
    coupon_error: Optional[str] = None


class CheckoutRequest(QuoteRequest):
    expected: Optional[PricingModel] = Field(
        default=None, description="Pricing the shopper confirmed; checkout rejects if it changed"
    )


class LineIssueModel(BaseModel):
    variant_id: str
    code: str
    requested: Optional[int] = None
    available: Optional[int] = None
    old_price: Optional[int] = None
    new_price: Optional[int] = None


class CouponIssueModel(BaseModel):
    code: str
    reason: str
    message: str


class CheckoutResponse(BaseModel):
    """Checkout outcome. Rejections are business results, not HTTP errors."""
    session_id: str
    state: str
    order_id: Optional[str] = None
    pricing: Optional[PricingModel] = None
    reasons: List[str] = Field(default_factory=list)
    line_issues: List[LineIssueModel] = Field(default_factory=list)
    coupon_issue: Optional[CouponIssueModel] = None
    message: Optional[str] = None
    cart: Optional[CartResponse] = Field(default=None, description="Corrected cart after a rejection")


# ============================================================================
# Coupon admin
# ============================================================================

class CouponForm(BaseModel):
    """Create/update form for a coupon; amounts in major units."""
    code: str
    discount_type: str = Field(default="percent", description="percent | fixed")
    amount: Decimal = Field(description="Percentage for percent coupons, taka for fixed")
    min_subtotal: Decimal = Field(default=Decimal("0"), description="Minimum subtotal in taka")
    max_uses: Optional[int] = Field(default=None, description="Total uses allowed (empty/0 = unlimited)")
    max_uses_per_user: Optional[int] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    is_active: bool = True


class CouponResponse(BaseModel):
    id: str
    code: str
    discount_type: str
    amount: str
    min_subtotal: str
    max_uses: Optional[int] = None
    max_uses_per_user: Optional[int] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    is_active: bool
    is_live: bool = False
    usage_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CouponListResponse(BaseModel):
    coupons: List[CouponResponse]
    total: int
