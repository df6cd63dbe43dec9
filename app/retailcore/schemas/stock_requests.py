from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from app.retailcore.schemas.payments import PaymentStatusResponse
from app.retailcore.schemas.sales import SaleResponse


class StockRequestPaymentRequest(BaseModel):
    payment_method: Literal["CASH", "CARD", "BANK_TRANSFER", "MOBILE_MONEY"]
    payer_phone: str | None = None


class StockRequestPaymentResponse(BaseModel):
    stock_request_id: str
    status: str
    sale: SaleResponse | None = None
    payment: PaymentStatusResponse | None = None
