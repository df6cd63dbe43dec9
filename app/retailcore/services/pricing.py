"""Cart totals.

One implementation serves the client preview (``POST /pricing/quote``) and the
server-side re-validation done before any payment is requested, so both must
agree to the cent for identical inputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Literal
from uuid import UUID

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def money(value) -> Decimal:
    if value is None or value == "":
        return ZERO
    return Decimal(str(value)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CartLine:
    product_id: UUID
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return money(self.unit_price * Decimal(self.quantity))


@dataclass(frozen=True)
class DiscountSpec:
    kind: Literal["fixed", "percent"]
    value: Decimal


@dataclass(frozen=True)
class PricedTotals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def _discount_amount(subtotal: Decimal, discount: DiscountSpec | None) -> Decimal:
    if discount is None:
        return ZERO
    value = Decimal(str(discount.value))
    if discount.kind == "percent":
        raw = subtotal * value / HUNDRED
    else:
        raw = value
    # clamp to [0, subtotal]
    return money(min(max(raw, ZERO), subtotal))


def compute_totals(
    lines: Iterable[CartLine],
    discount: DiscountSpec | None,
    tax_rate_percent: Decimal,
    apply_tax: bool,
) -> PricedTotals:
    subtotal = money(sum((line.line_total for line in lines), ZERO))
    discount_amount = _discount_amount(subtotal, discount)
    taxable = subtotal - discount_amount
    tax_amount = ZERO
    if apply_tax:
        tax_amount = money(taxable * Decimal(str(tax_rate_percent)) / HUNDRED)
    return PricedTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        total_amount=money(taxable + tax_amount),
    )
