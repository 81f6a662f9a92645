"""
Money and quantity primitives.

Money is an ``int`` count of the smallest currency unit (poisha for BDT).
Floats never enter the arithmetic; percentages go through ``Decimal`` so a
rate such as 12.5% floors exactly.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR
from typing import Iterable, Union

Money = int

Rate = Union[int, float, Decimal, str]


def ensure_money(value: int, name: str = "amount") -> Money:
    """Validate that ``value`` is a non-negative integer amount and return it."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer number of minor units, got {value!r}")
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


def ensure_quantity(value: int, name: str = "quantity") -> int:
    """Quantities follow the same rules as money: non-negative integers."""
    return ensure_money(value, name)


def line_total(unit_price: Money, quantity: int) -> Money:
    return ensure_money(unit_price, "unit_price") * ensure_quantity(quantity)


def sum_money(amounts: Iterable[Money]) -> Money:
    total = 0
    for amount in amounts:
        total += ensure_money(amount)
    return total


def subtract_clamped(amount: Money, delta: Money) -> Money:
    """Subtract ``delta`` from ``amount`` without going below zero."""
    return max(0, ensure_money(amount) - ensure_money(delta, "delta"))


def percent_of(amount: Money, rate: Rate) -> Money:
    """
    Floor of ``amount * rate / 100``.

    ``rate`` is converted through ``str`` so a float like 12.5 is taken at its
    decimal face value rather than its binary approximation.
    """
    ensure_money(amount)
    pct = Decimal(str(rate))
    if pct < 0:
        raise ValueError(f"rate must be >= 0, got {rate}")
    value = (Decimal(amount) * pct / Decimal(100)).to_integral_value(rounding=ROUND_FLOOR)
    return int(value)


def to_minor_units(major: Rate, minor_per_major: int = 100) -> Money:
    """Convert a major-unit amount (e.g. ``"1299.50"``) to minor units, flooring."""
    value = (Decimal(str(major)) * minor_per_major).to_integral_value(rounding=ROUND_FLOOR)
    return ensure_money(int(value))


def format_money(amount: Money, currency: str = "BDT", minor_per_major: int = 100) -> str:
    """Render minor units for display, e.g. ``BDT 1,299.50``."""
    major, minor = divmod(ensure_money(amount), minor_per_major)
    width = len(str(minor_per_major)) - 1
    return f"{currency} {major:,}.{minor:0{width}d}"


def to_major_units(amount: Money, minor_per_major: int = 100) -> Decimal:
    """Convert minor units back to an exact major-unit ``Decimal`` for storage."""
    places = Decimal(1).scaleb(-(len(str(minor_per_major)) - 1))
    return (Decimal(ensure_money(amount)) / minor_per_major).quantize(places)
