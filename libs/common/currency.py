"""Currency conversion utilities.

Internal storage unit: Naira as ``Decimal`` with two decimal places.
Gateway unit: kobo (smallest NGN unit, 100 kobo = ₦1).

Conversion chain
----------------
Naira × 100 → Kobo
Kobo  ÷ 100 → Naira
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

# ─── constants ───────────────────────────────────────────────────────────────

KOBO_PER_NAIRA: int = 100
MINOR_UNIT = Decimal("0.01")
ZERO = Decimal("0")

Number = Union[int, float, str, Decimal]


# ─── conversion helpers ───────────────────────────────────────────────────────


def to_decimal(amount: Number) -> Decimal:
    """Coerce a number to ``Decimal`` without float artefacts."""
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def round_money(amount: Number) -> Decimal:
    """Quantize to the currency minor unit (round half-up)."""
    return to_decimal(amount).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def naira_to_kobo(naira: Number) -> int:
    """Convert Naira to kobo (round half-up). ₦1 = 100 kobo."""
    return int(round_money(naira) * KOBO_PER_NAIRA)


def kobo_to_naira(kobo: int) -> Decimal:
    """Convert kobo to Naira. 100 kobo = ₦1."""
    return round_money(Decimal(int(kobo)) / KOBO_PER_NAIRA)


def format_naira(amount: Number) -> str:
    """Display helper used in notification bodies, e.g. ``₦1,500.00``."""
    return f"₦{round_money(amount):,.2f}"
