from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from app.retailcore.core.error_catalog import AppError, ErrorCatalog
from app.retailcore.core.logging import log_json
from app.retailcore.core.metrics import metrics
from app.retailcore.db.models import PaymentTransaction, ReconciliationItem
from app.retailcore.repos.payments import PaymentTransactionRepository
from app.retailcore.repos.reconciliation import ReconciliationRepository
from app.retailcore.services.payment_gateway import GatewayError, PaymentGateway
from app.retailcore.services.payment_intent import AWAITING_CONFIRMATION, FAILED, TIMED_OUT

logger = logging.getLogger("retailcore.reconciliation")

LATE_CONFIRMATION = "LATE_CONFIRMATION"
FULFILLMENT_FAILED = "FULFILLMENT_FAILED"

STATUS_OPEN = "OPEN"
STATUS_RESOLVED = "RESOLVED"

RESOLUTIONS = ("REFUNDED", "FULFILLED_MANUALLY", "DISMISSED")

SWEEP_EXPIRED_REASON = "Expired by reconciliation sweep"


@dataclass
class SweepReport:
    expired: list[str] = field(default_factory=list)
    requeried: list[str] = field(default_factory=list)
    enqueued: list[str] = field(default_factory=list)
    query_errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "expired": self.expired,
            "requeried": self.requeried,
            "enqueued": self.enqueued,
            "query_errors": self.query_errors,
        }


class ReconciliationService:
    """Manual-reconciliation queue for money that moved without a matching sale."""

    def __init__(self, db):
        self.db = db
        self.repo = ReconciliationRepository(db)
        self.payments = PaymentTransactionRepository(db)

    def enqueue(
        self,
        reason: str,
        transaction: PaymentTransaction,
        *,
        detail: str | None = None,
        receipt_number: str | None = None,
    ) -> ReconciliationItem:
        existing = self.repo.get_by_reference(transaction.external_reference, reason)
        if existing is not None:
            return existing
        item = ReconciliationItem(
            external_reference=transaction.external_reference,
            reason=reason,
            status=STATUS_OPEN,
            amount=transaction.amount,
            settleable_key=transaction.settleable_key,
            receipt_number=receipt_number or transaction.receipt_number,
            detail=detail,
        )
        try:
            item = self.repo.create(item)
        except IntegrityError:
            self.db.rollback()
            return self.repo.get_by_reference(transaction.external_reference, reason)
        log_json(
            logger,
            {
                "event": "reconciliation_enqueued",
                "item_id": str(item.id),
                "external_reference": item.external_reference,
                "reason": reason,
                "amount": format(item.amount, "f"),
            },
            level=logging.WARNING,
        )
        return item

    def list_items(self, *, status: str | None = None) -> list[ReconciliationItem]:
        return self.repo.list_items(status=status)

    def resolve(self, item_id, *, resolution: str, note: str | None = None) -> ReconciliationItem:
        if resolution not in RESOLUTIONS:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "unknown resolution", "resolution": resolution, "allowed": list(RESOLUTIONS)},
            )
        item = self.repo.get_by_id(item_id)
        if item is None:
            raise AppError(ErrorCatalog.RECONCILIATION_ITEM_NOT_FOUND, details={"item_id": str(item_id)})
        if item.status == STATUS_RESOLVED:
            raise AppError(
                ErrorCatalog.RECONCILIATION_ITEM_RESOLVED,
                details={"item_id": str(item_id), "resolution": item.resolution},
            )
        item.status = STATUS_RESOLVED
        item.resolution = resolution
        item.resolution_note = note
        item.resolved_at = datetime.utcnow()
        return self.repo.update(item)

    def _already_queued(self, reference: str) -> bool:
        return any(
            self.repo.get_by_reference(reference, reason) is not None
            for reason in (LATE_CONFIRMATION, FULFILLMENT_FAILED)
        )

    async def sweep(
        self,
        gateway: PaymentGateway,
        *,
        active_references: set[str],
        timeout_sec: float,
        lookback_hours: int,
    ) -> SweepReport:
        """Expire orphaned attempts and re-ask the provider about recent failures.

        Rows still AWAITING_CONFIRMATION without a live intent (e.g. after a
        restart) are closed as TIMED_OUT once past the timeout. TIMED_OUT and
        FAILED rows inside the lookback window are re-queried; any the provider
        reports as completed go to the queue as late confirmations.
        """
        report = SweepReport()
        now = datetime.utcnow()

        for transaction in self.payments.list_by_status_since([AWAITING_CONFIRMATION], datetime(1970, 1, 1)):
            if transaction.external_reference in active_references:
                continue
            if transaction.created_at + timedelta(seconds=timeout_sec) > now:
                continue
            transaction.status = TIMED_OUT
            transaction.outcome = "timed_out"
            transaction.result_desc = SWEEP_EXPIRED_REASON
            self.payments.update(transaction)
            report.expired.append(transaction.external_reference)

        since = now - timedelta(hours=lookback_hours)
        for transaction in self.payments.list_by_status_since([TIMED_OUT, FAILED], since):
            reference = transaction.external_reference
            if transaction.sale_id is not None or self._already_queued(reference):
                continue
            try:
                status = await gateway.query_status(reference)
            except GatewayError as exc:
                logger.warning("sweep query failed reference=%s error=%s", reference, exc)
                report.query_errors.append(reference)
                continue
            report.requeried.append(reference)
            if status.state != "completed":
                continue
            if status.receipt_number:
                transaction.receipt_number = status.receipt_number
                self.payments.update(transaction)
            self.enqueue(
                LATE_CONFIRMATION,
                transaction,
                detail=f"Provider reports completed after local {transaction.status.lower()}",
                receipt_number=status.receipt_number,
            )
            metrics.increment_late_confirmation()
            report.enqueued.append(reference)

        log_json(logger, {"event": "reconciliation_sweep", **report.as_dict()})
        return report
