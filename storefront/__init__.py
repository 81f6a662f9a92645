"""
Storefront - cart pricing and coupon-discount engine

Turns selected product variants plus an optional promotional code into a
validated, stock-aware order total:
- Stock-clamped cart store
- Coupon validation with usage counted from committed orders
- Integer minor-unit pricing with flat or zone shipping
- Commit-time re-validation and order placement
"""

from storefront.cart.store import CartStore
from storefront.checkout.orchestrator import CheckoutOrchestrator, CheckoutResult, CheckoutState
from storefront.core.config import StorefrontConfig, get_config, set_config
from storefront.coupons.validator import Invalid, InvalidReason, Valid, validate
from storefront.pricing.calculator import PricingResult, compute_totals

__all__ = [
    'CartStore',
    'CheckoutOrchestrator',
    'CheckoutResult',
    'CheckoutState',
    'StorefrontConfig',
    'get_config',
    'set_config',
    'Invalid',
    'InvalidReason',
    'Valid',
    'validate',
    'PricingResult',
    'compute_totals',
]

__version__ = '0.1.0'
