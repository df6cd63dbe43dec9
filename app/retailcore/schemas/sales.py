from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel

from app.retailcore.schemas.pricing import DiscountIn


class CartLineIn(BaseModel):
    product_id: UUID
    quantity: int
    unit_price: Decimal | None = None


class CartCheckoutBase(BaseModel):
    transaction_id: str | None
    customer_id: UUID | None = None
    branch_id: UUID | None = None
    invoice_id: UUID | None = None
    lines: list[CartLineIn] = []
    discount: DiscountIn | None = None
    apply_tax: bool = True
    expected_total: Decimal | None = None


class PosSaleCreateRequest(CartCheckoutBase):
    payment_method: Literal["CASH", "CARD", "BANK_TRANSFER"]


class SaleItemResponse(BaseModel):
    id: str
    product_id: str
    position: int
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class SaleResponse(BaseModel):
    id: str
    sale_no: str
    settlement_key: str
    customer_id: str
    branch_id: str
    subtotal_amount: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    payment_method: str
    payment_reference: str | None
    invoice_id: str | None
    stock_request_id: str | None
    created_at: datetime
    items: list[SaleItemResponse]


class SaleListResponse(BaseModel):
    rows: list[SaleResponse]
    page: int
    page_size: int
    total: int
