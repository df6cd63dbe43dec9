from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel


class ReconciliationItemResponse(BaseModel):
    id: str
    external_reference: str
    reason: str
    status: str
    amount: Decimal
    settleable_key: str
    receipt_number: str | None
    detail: str | None
    resolution: str | None
    resolution_note: str | None
    created_at: datetime
    resolved_at: datetime | None


class ReconciliationListResponse(BaseModel):
    rows: list[ReconciliationItemResponse]


class ReconciliationResolveRequest(BaseModel):
    resolution: Literal["REFUNDED", "FULFILLED_MANUALLY", "DISMISSED"]
    note: str | None = None


class SweepResponse(BaseModel):
    expired: list[str]
    requeried: list[str]
    enqueued: list[str]
    query_errors: list[str]
