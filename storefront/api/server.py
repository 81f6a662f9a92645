"""
FastAPI server for the storefront cart pricing engine.

Cart, quote and checkout endpoints for the storefront, plus coupon management
for the back-office.

Usage:
    uvicorn storefront.api.server:app --reload --port 8000
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from storefront import __version__
from storefront.api.models import (
    AddItemRequest,
    CartLineModel,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    CouponForm,
    CouponIssueModel,
    CouponListResponse,
    CouponResponse,
    HealthResponse,
    LineIssueModel,
    PricingModel,
    QuoteRequest,
    QuoteResponse,
    ShippingOptionModel,
    ShippingOptionsResponse,
    StockLimitedModel,
    UpdateQuantityRequest,
)
from storefront.cart.store import CartChange, CartStore
from storefront.checkout.orchestrator import CheckoutOrchestrator
from storefront.checkout.quote import quote
from storefront.coupons.admin import CouponAdmin, CouponDraft, is_live
from storefront.core.config import get_config
from storefront.data.factory import Stores, get_stores
from storefront.data.records import Coupon, format_timestamp
from storefront.errors import (
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    StorefrontError,
    ValidationError,
)
from storefront.pricing.calculator import PricingResult, compute_subtotal
from storefront.pricing.money import format_money
from storefront.pricing.shipping import shipping_rule_from_config
from storefront.utils.logger import get_logger

logger = get_logger("api.server")

# Initialize FastAPI app
app = FastAPI(
    title="Storefront API",
    description="Cart pricing and coupon-discount engine",
    version=__version__,
)

# Enable CORS for the storefront and back-office frontends
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Cart storage: session_id -> CartStore
_CARTS: Dict[str, CartStore] = {}

_stores: Optional[Stores] = None


def get_app_stores() -> Stores:
    """Backing stores for the configured backend (built on first use)."""
    global _stores
    if _stores is None:
        _stores = get_stores(get_config())
    return _stores


def set_app_stores(stores: Optional[Stores]) -> None:
    """Swap the backing stores (tests, local demo)."""
    global _stores
    _stores = stores


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_cart(session_id: str, create: bool = False) -> CartStore:
    """Cart for a session; unknown sessions get an empty cart that is only stored when ``create``."""
    cart = _CARTS.get(session_id)
    if cart is None:
        cart = CartStore()
        if create:
            _CARTS[session_id] = cart
    return cart


def _drop_if_empty(session_id: str, cart: CartStore) -> None:
    if cart.is_empty:
        _CARTS.pop(session_id, None)


def _http_error(e: StorefrontError) -> HTTPException:
    if isinstance(e, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ValidationError):
        status = 409 if e.reason == "DUPLICATE_CODE" else 400
        return HTTPException(status_code=status, detail={"reason": e.reason, "message": str(e)})
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=503, detail="Store temporarily unavailable")
    return HTTPException(status_code=500, detail=str(e))


def _cart_response(session_id: str, cart: CartStore, change: Optional[CartChange] = None) -> CartResponse:
    lines = cart.get_lines()
    subtotal = compute_subtotal(lines)
    config = get_config()
    notice = change.stock_limited if change is not None else None
    return CartResponse(
        session_id=session_id,
        lines=[
            CartLineModel(
                variant_id=line.variant_id,
                product_id=line.product_id,
                sku=line.sku,
                title=line.title,
                unit_price=line.unit_price,
                quantity=line.quantity,
                line_total=line.line_total,
                stock_at_add=line.stock_at_add,
            )
            for line in lines
        ],
        item_count=cart.item_count,
        subtotal=subtotal,
        subtotal_display=format_money(subtotal, config.currency, config.minor_units_per_major),
        currency=config.currency,
        stock_limited=(
            StockLimitedModel(variant_id=notice.variant_id, requested=notice.requested, available=notice.available)
            if notice is not None else None
        ),
    )


def _pricing_model(pricing: Optional[PricingResult]) -> Optional[PricingModel]:
    if pricing is None:
        return None
    return PricingModel(**pricing.to_dict())


def _roles(header: Optional[str]) -> List[str]:
    return [r.strip() for r in (header or "").split(",") if r.strip()]


def _admin(x_admin_roles: Optional[str]) -> CouponAdmin:
    config = get_config()
    return CouponAdmin(get_app_stores().coupons, _roles(x_admin_roles), config.minor_units_per_major)


def _draft(form: CouponForm) -> CouponDraft:
    return CouponDraft(**form.model_dump())


def _coupon_response(coupon: Coupon, usage_count: int = 0) -> CouponResponse:
    row = coupon.to_row(get_config().minor_units_per_major)
    return CouponResponse(
        id=coupon.id,
        usage_count=usage_count,
        is_live=is_live(coupon, _utcnow()),
        created_at=format_timestamp(coupon.created_at),
        updated_at=format_timestamp(coupon.updated_at),
        **row,
    )


# API Endpoints

@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    config = get_config()
    return HealthResponse(
        status="online",
        service="Storefront API",
        version=__version__,
        backend=get_app_stores().backend,
        config={
            "currency": config.currency,
            "shipping_mode": config.shipping_mode,
            "enforce_coupon_cap": config.enforce_coupon_cap,
        },
    )


@app.get("/shipping/options", response_model=ShippingOptionsResponse)
async def shipping_options():
    """Configured delivery zones and fees."""
    config = get_config()
    rule = shipping_rule_from_config(config)
    return ShippingOptionsResponse(
        mode=config.shipping_mode,
        currency=config.currency,
        free_over=config.shipping_free_over,
        options=[
            ShippingOptionModel(
                zone=option["zone"],
                fee=option["fee"],
                fee_display=format_money(option["fee"], config.currency, config.minor_units_per_major),
            )
            for option in rule.options()
        ],
    )


@app.get("/cart/{session_id}", response_model=CartResponse)
async def get_cart(session_id: str):
    """Get the current cart (an empty cart for unknown sessions; nothing is stored)."""
    return _cart_response(session_id, _get_cart(session_id))


@app.post("/cart/{session_id}/items", response_model=CartResponse)
async def add_item(session_id: str, request: AddItemRequest):
    """Add a variant to the cart, clamped to live stock."""
    logger.info("api_request: path=/cart/items session_id=%s payload=%s", session_id, request.model_dump())
    try:
        variant = await get_app_stores().catalog.get_variant(request.variant_id)
    except StorefrontError as e:
        raise _http_error(e)
    cart = _get_cart(session_id, create=True)
    change = cart.add_item(variant, request.quantity)
    _drop_if_empty(session_id, cart)
    return _cart_response(session_id, cart, change)


@app.patch("/cart/{session_id}/items/{variant_id}", response_model=CartResponse)
async def update_item(session_id: str, variant_id: str, request: UpdateQuantityRequest):
    """Set a line's quantity (0 removes it)."""
    cart = _get_cart(session_id)
    change = cart.update_quantity(variant_id, request.quantity)
    _drop_if_empty(session_id, cart)
    return _cart_response(session_id, cart, change)


@app.delete("/cart/{session_id}/items/{variant_id}", response_model=CartResponse)
async def remove_item(session_id: str, variant_id: str):
    """Remove a line; removing an absent line succeeds."""
    cart = _get_cart(session_id)
    cart.remove_item(variant_id)
    _drop_if_empty(session_id, cart)
    return _cart_response(session_id, cart)


@app.post("/cart/{session_id}/quote", response_model=QuoteResponse)
async def quote_cart(session_id: str, request: QuoteRequest):
    """Price the cart with an optional coupon (non-binding preview)."""
    config = get_config()
    try:
        result = await quote(
            _get_cart(session_id),
            get_app_stores().coupons,
            shipping_rule_from_config(config),
            _utcnow(),
            coupon_code=request.coupon_code,
            user_id=request.user_id,
            destination=request.destination,
        )
    except StorefrontError as e:
        raise _http_error(e)
    outcome = result.coupon_outcome
    return QuoteResponse(
        session_id=session_id,
        pricing=_pricing_model(result.pricing),
        currency=config.currency,
        coupon_reason=outcome.reason.value if outcome is not None and not outcome.is_valid else None,
        coupon_error=result.coupon_error,
    )


@app.post("/cart/{session_id}/checkout", response_model=CheckoutResponse)
async def checkout(session_id: str, request: CheckoutRequest):
    """Re-validate the cart against live data and place the order."""
    logger.info("api_request: path=/cart/checkout session_id=%s coupon=%s", session_id, request.coupon_code)
    config = get_config()
    stores = get_app_stores()
    cart = _get_cart(session_id)
    orchestrator = CheckoutOrchestrator(
        stores.catalog,
        stores.coupons,
        stores.orders,
        shipping_rule_from_config(config),
        enforce_coupon_cap=config.enforce_coupon_cap,
    )
    expected = PricingResult(**request.expected.model_dump()) if request.expected else None
    result = await orchestrator.checkout(
        cart,
        coupon_code=request.coupon_code,
        user_id=request.user_id,
        destination=request.destination,
        expected=expected,
    )
    _drop_if_empty(session_id, cart)
    return CheckoutResponse(
        session_id=session_id,
        state=result.state.value,
        order_id=result.order_id,
        pricing=_pricing_model(result.pricing),
        reasons=[r.value for r in result.reasons],
        line_issues=[
            LineIssueModel(
                variant_id=i.variant_id,
                code=i.code.value,
                requested=i.requested,
                available=i.available,
                old_price=i.old_price,
                new_price=i.new_price,
            )
            for i in result.line_issues
        ],
        coupon_issue=(
            CouponIssueModel(
                code=result.coupon_issue.code,
                reason=result.coupon_issue.reason.value,
                message=result.coupon_issue.message,
            )
            if result.coupon_issue else None
        ),
        message=result.message,
        cart=None if result.ok else _cart_response(session_id, cart),
    )


# Coupon admin

@app.get("/admin/coupons", response_model=CouponListResponse)
async def list_coupons(
    search: str = "",
    status: str = "all",
    discount_type: str = "all",
    x_admin_roles: Optional[str] = Header(default=None),
):
    try:
        items = await _admin(x_admin_roles).list_coupons(search, status, discount_type)
    except StorefrontError as e:
        raise _http_error(e)
    return CouponListResponse(
        coupons=[_coupon_response(i.coupon, i.usage_count) for i in items],
        total=len(items),
    )


@app.post("/admin/coupons", response_model=CouponResponse, status_code=201)
async def create_coupon(form: CouponForm, x_admin_roles: Optional[str] = Header(default=None)):
    try:
        coupon = await _admin(x_admin_roles).create(_draft(form))
    except StorefrontError as e:
        raise _http_error(e)
    return _coupon_response(coupon)


@app.patch("/admin/coupons/{coupon_id}", response_model=CouponResponse)
async def update_coupon(coupon_id: str, form: CouponForm, x_admin_roles: Optional[str] = Header(default=None)):
    try:
        coupon = await _admin(x_admin_roles).update(coupon_id, _draft(form))
        usage = await get_app_stores().coupons.count_usage(coupon_id)
    except StorefrontError as e:
        raise _http_error(e)
    return _coupon_response(coupon, usage)


@app.post("/admin/coupons/{coupon_id}/duplicate", response_model=CouponResponse, status_code=201)
async def duplicate_coupon(coupon_id: str, x_admin_roles: Optional[str] = Header(default=None)):
    try:
        coupon = await _admin(x_admin_roles).duplicate(coupon_id)
    except StorefrontError as e:
        raise _http_error(e)
    return _coupon_response(coupon)


@app.post("/admin/coupons/{coupon_id}/toggle", response_model=CouponResponse)
async def toggle_coupon(coupon_id: str, x_admin_roles: Optional[str] = Header(default=None)):
    try:
        coupon = await _admin(x_admin_roles).toggle_active(coupon_id)
        usage = await get_app_stores().coupons.count_usage(coupon_id)
    except StorefrontError as e:
        raise _http_error(e)
    return _coupon_response(coupon, usage)


@app.delete("/admin/coupons/{coupon_id}")
async def delete_coupon(coupon_id: str, x_admin_roles: Optional[str] = Header(default=None)):
    try:
        await _admin(x_admin_roles).delete(coupon_id)
    except StorefrontError as e:
        raise _http_error(e)
    return {"status": "deleted", "coupon_id": coupon_id}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
