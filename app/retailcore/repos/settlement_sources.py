from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from sqlalchemy import select, update

from app.retailcore.core.error_catalog import AppError, ErrorCatalog
from app.retailcore.db.models import Invoice, InvoiceItem, StockRequest, StockRequestItem

INVOICE_UNPAID = "UNPAID"
INVOICE_PAID = "PAID"
STOCK_REQUEST_APPROVED = "APPROVED"
STOCK_REQUEST_PAID = "PAID"


@dataclass(frozen=True)
class SettlementSource:
    kind: Literal["invoice", "stock_request"]
    id: UUID


class SettlementSourceRepository:
    """Invoice / stock-request status store used inside the settlement unit."""

    def __init__(self, db):
        self.db = db

    def get_invoice(self, invoice_id: UUID | str) -> Invoice | None:
        return self.db.execute(select(Invoice).where(Invoice.id == invoice_id)).scalars().first()

    def get_invoice_items(self, invoice_id: UUID | str) -> list[InvoiceItem]:
        return (
            self.db.execute(
                select(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id).order_by(InvoiceItem.position)
            )
            .scalars()
            .all()
        )

    def get_stock_request(self, stock_request_id: UUID | str) -> StockRequest | None:
        return self.db.execute(select(StockRequest).where(StockRequest.id == stock_request_id)).scalars().first()

    def get_stock_request_items(self, stock_request_id: UUID | str) -> list[StockRequestItem]:
        return (
            self.db.execute(
                select(StockRequestItem)
                .where(StockRequestItem.stock_request_id == stock_request_id)
                .order_by(StockRequestItem.position)
            )
            .scalars()
            .all()
        )

    def mark_paid(self, source: SettlementSource, amount: Decimal) -> None:
        if source.kind == "invoice":
            stmt = (
                update(Invoice)
                .where(Invoice.id == source.id, Invoice.status == INVOICE_UNPAID)
                .values(status=INVOICE_PAID, amount_paid=Invoice.amount_paid + amount)
            )
        elif source.kind == "stock_request":
            stmt = (
                update(StockRequest)
                .where(StockRequest.id == source.id, StockRequest.status == STOCK_REQUEST_APPROVED)
                .values(status=STOCK_REQUEST_PAID, updated_at=datetime.utcnow())
            )
        else:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": f"unknown source kind {source.kind}"})

        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount != 1:
            raise AppError(
                ErrorCatalog.SETTLEMENT_SOURCE_NOT_PAYABLE,
                details={"kind": source.kind, "id": str(source.id)},
            )
