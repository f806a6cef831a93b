"""
Pricing calculator for a cart.

Pure functions, no database access. All amounts are integer cents and tax
rates are basis points, so totals are exact: only the per-line tax is
rounded (nearest cent, half-up).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..errors import InvalidInput


@dataclass(frozen=True)
class PricingLine:
    unit_price_cents: int
    quantity: int
    tax_rate_bps: int = 0


@dataclass(frozen=True)
class LineTotals:
    subtotal_cents: int
    tax_cents: int


@dataclass(frozen=True)
class PricingResult:
    subtotal_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int
    lines: tuple[LineTotals, ...]


def line_tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    """subtotal * rate / 10000 rounded to the nearest cent, half-up."""
    return (subtotal_cents * tax_rate_bps + 5000) // 10000


def calculate_totals(lines: Iterable[PricingLine], discount_cents: int = 0) -> PricingResult:
    """
    subtotal = sum(price * qty); tax = sum of per-line tax at each line's
    own rate; total = subtotal + tax - discount.

    Raises InvalidInput for an empty cart, a non-positive quantity, a
    negative price/rate/discount, or a discount larger than subtotal + tax.
    """
    lines = list(lines)
    if not lines:
        raise InvalidInput("Cart must contain at least one item")
    if discount_cents is None:
        discount_cents = 0
    if discount_cents < 0:
        raise InvalidInput("Discount cannot be negative", details={"discount_cents": discount_cents})

    breakdown = []
    subtotal = 0
    tax = 0
    for index, line in enumerate(lines):
        if line.quantity <= 0:
            raise InvalidInput(
                "Quantity must be positive",
                details={"line": index, "quantity": line.quantity},
            )
        if line.unit_price_cents < 0 or line.tax_rate_bps < 0:
            raise InvalidInput(
                "Price and tax rate cannot be negative",
                details={"line": index},
            )
        line_subtotal = line.unit_price_cents * line.quantity
        line_tax = line_tax_cents(line_subtotal, line.tax_rate_bps)
        breakdown.append(LineTotals(subtotal_cents=line_subtotal, tax_cents=line_tax))
        subtotal += line_subtotal
        tax += line_tax

    if discount_cents > subtotal + tax:
        raise InvalidInput(
            "Discount exceeds sale amount",
            details={"discount_cents": discount_cents, "gross_cents": subtotal + tax},
        )

    return PricingResult(
        subtotal_cents=subtotal,
        tax_cents=tax,
        discount_cents=discount_cents,
        total_cents=subtotal + tax - discount_cents,
        lines=tuple(breakdown),
    )
