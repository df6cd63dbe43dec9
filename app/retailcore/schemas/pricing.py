from __future__ import annotations

from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel


class DiscountIn(BaseModel):
    kind: Literal["fixed", "percent"]
    value: Decimal


class QuoteLine(BaseModel):
    product_id: UUID
    quantity: int
    unit_price: Decimal


class QuoteRequest(BaseModel):
    lines: list[QuoteLine]
    discount: DiscountIn | None = None
    apply_tax: bool = True
    tax_rate_percent: Decimal | None = None


class QuoteResponse(BaseModel):
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    tax_rate_percent: Decimal
