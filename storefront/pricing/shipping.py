"""
Shipping fee rules.

The engine treats shipping as an opaque input: a rule is any callable
``(subtotal, destination) -> Money``. Two rules cover what the back-office
configures:

  flat: one fee for every order
  zone: a fee per delivery zone (e.g. inside / outside Dhaka), with a
        default zone for unknown destinations

Both accept ``free_over``: orders whose subtotal reaches it ship free.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from storefront.core.config import StorefrontConfig
from storefront.pricing.money import Money, ensure_money

ShippingRule = Callable[[Money, Optional[str]], Money]


@dataclass(frozen=True)
class FlatShippingRule:
    fee: Money
    free_over: Optional[Money] = None

    def __post_init__(self):
        ensure_money(self.fee, "fee")
        if self.free_over is not None:
            ensure_money(self.free_over, "free_over")

    def __call__(self, subtotal: Money, destination: Optional[str] = None) -> Money:
        if self.free_over is not None and subtotal >= self.free_over:
            return 0
        return self.fee

    def options(self) -> List[dict]:
        return [{"zone": "standard", "fee": self.fee}]


@dataclass(frozen=True)
class ZoneShippingRule:
    zones: Dict[str, Money] = field(default_factory=dict)
    default_zone: str = ""
    free_over: Optional[Money] = None

    def __post_init__(self):
        if not self.zones:
            raise ValueError("ZoneShippingRule needs at least one zone")
        for zone, fee in self.zones.items():
            ensure_money(fee, f"zones[{zone!r}]")
        if self.default_zone not in self.zones:
            raise ValueError(f"Unknown default zone: {self.default_zone!r}")
        if self.free_over is not None:
            ensure_money(self.free_over, "free_over")

    def zone_for(self, destination: Optional[str]) -> str:
        key = (destination or "").strip().lower()
        return key if key in self.zones else self.default_zone

    def __call__(self, subtotal: Money, destination: Optional[str] = None) -> Money:
        if self.free_over is not None and subtotal >= self.free_over:
            return 0
        return self.zones[self.zone_for(destination)]

    def options(self) -> List[dict]:
        """Zone list for UI dropdowns."""
        return [{"zone": zone, "fee": fee} for zone, fee in sorted(self.zones.items())]


def shipping_rule_from_config(config: StorefrontConfig) -> ShippingRule:
    mode = config.shipping_mode.lower()
    if mode == "flat":
        return FlatShippingRule(config.shipping_flat_fee, config.shipping_free_over)
    if mode == "zone":
        return ZoneShippingRule(
            zones={k.lower(): v for k, v in config.shipping_zone_fees.items()},
            default_zone=config.shipping_default_zone.lower(),
            free_over=config.shipping_free_over,
        )
    raise ValueError(f"Unknown shipping mode: {config.shipping_mode!r}")
