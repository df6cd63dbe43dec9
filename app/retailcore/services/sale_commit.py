from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from app.retailcore.core.error_catalog import AppError, ErrorCatalog
from app.retailcore.core.logging import log_json
from app.retailcore.db.models import Sale, SaleItem
from app.retailcore.repos.sales import SaleRepository
from app.retailcore.repos.settlement_sources import SettlementSource, SettlementSourceRepository
from app.retailcore.services.pricing import CartLine, PricedTotals
from app.retailcore.services.stock_ledger import StockLedger

logger = logging.getLogger("retailcore.settlement")

PAYMENT_METHODS = ("CASH", "CARD", "BANK_TRANSFER", "MOBILE_MONEY")


@dataclass(frozen=True)
class CommitRequest:
    lines: tuple[CartLine, ...]
    totals: PricedTotals
    customer_id: UUID
    branch_id: UUID
    payment_method: str
    settlement_key: str
    payment_reference: str | None = None
    source: SettlementSource | None = None


def _aggregate_quantities(lines: Iterable[CartLine]) -> dict[str, int]:
    quantities: dict[str, int] = {}
    for line in lines:
        key = str(line.product_id)
        quantities[key] = quantities.get(key, 0) + int(line.quantity)
    return quantities


def _sale_no() -> str:
    return f"SALE-{datetime.utcnow():%Y%m%d%H%M%S}-{secrets.token_hex(3).upper()}"


class SaleCommitService:
    """Turns a priced cart into a durable sale in one transaction.

    Stock decrement, sale rows and the optional invoice / stock-request status
    flip are committed together or not at all. ``settlement_key`` makes the
    commit idempotent: a repeated call for the same key returns the sale that
    already exists.
    """

    def __init__(self, db):
        self.db = db
        self.sales = SaleRepository(db)
        self.ledger = StockLedger(db)
        self.sources = SettlementSourceRepository(db)

    def commit(self, request: CommitRequest) -> Sale:
        if request.payment_method not in PAYMENT_METHODS:
            raise AppError(
                ErrorCatalog.UNSUPPORTED_PAYMENT_METHOD,
                details={"payment_method": request.payment_method},
            )
        if not request.lines:
            raise AppError(ErrorCatalog.EMPTY_CART)

        existing = self.sales.get_by_settlement_key(request.settlement_key)
        if existing is not None:
            logger.info("settlement already committed key=%s sale=%s", request.settlement_key, existing.id)
            return existing

        try:
            sale = self._apply(request)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            winner = self.sales.get_by_settlement_key(request.settlement_key)
            if winner is None:
                raise
            return winner
        except Exception:
            self.db.rollback()
            raise

        log_json(
            logger,
            {
                "event": "sale_committed",
                "sale_id": str(sale.id),
                "sale_no": sale.sale_no,
                "settlement_key": request.settlement_key,
                "payment_method": request.payment_method,
                "total_amount": format(request.totals.total_amount, "f"),
                "source": request.source.kind if request.source else None,
            },
        )
        return sale

    def _apply(self, request: CommitRequest) -> Sale:
        quantities = _aggregate_quantities(request.lines)

        # re-validate everything before touching any row
        for product_id, quantity in quantities.items():
            self.ledger.ensure_available(product_id, quantity)

        # fixed order keeps concurrent commits from interleaving row locks
        for product_id in sorted(quantities):
            self.ledger.decrement(product_id, quantities[product_id])

        totals = request.totals
        sale = Sale(
            sale_no=_sale_no(),
            settlement_key=request.settlement_key,
            customer_id=request.customer_id,
            branch_id=request.branch_id,
            subtotal_amount=totals.subtotal,
            discount_amount=totals.discount_amount,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            payment_method=request.payment_method,
            payment_reference=request.payment_reference,
            invoice_id=request.source.id if request.source and request.source.kind == "invoice" else None,
            stock_request_id=(
                request.source.id if request.source and request.source.kind == "stock_request" else None
            ),
        )
        self.db.add(sale)
        self.db.flush()

        self.db.add_all(
            [
                SaleItem(
                    sale_id=sale.id,
                    product_id=line.product_id,
                    position=position,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    line_total=line.line_total,
                )
                for position, line in enumerate(request.lines)
            ]
        )

        if request.source is not None:
            self.sources.mark_paid(request.source, Decimal(totals.total_amount))

        self.db.flush()
        return sale
