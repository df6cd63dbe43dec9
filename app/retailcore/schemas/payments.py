from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from app.retailcore.schemas.sales import CartCheckoutBase


class MobileMoneyCheckoutRequest(CartCheckoutBase):
    payer_phone: str


class PaymentStatusResponse(BaseModel):
    external_reference: str
    settleable_key: str
    settleable_kind: str
    state: str
    active: bool
    amount: Decimal
    outcome: str | None = None
    failure_reason: str | None = None
    receipt_number: str | None = None
    sale_id: str | None = None


class PaymentTransactionResponse(BaseModel):
    id: str
    external_reference: str
    settleable_key: str
    settleable_kind: str
    amount: Decimal
    payer_phone: str
    status: str
    outcome: str | None
    result_desc: str | None
    receipt_number: str | None
    sale_id: str | None
    created_at: datetime
    updated_at: datetime | None


class PaymentTransactionListResponse(BaseModel):
    rows: list[PaymentTransactionResponse]
    page: int
    page_size: int
    total: int


class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"
