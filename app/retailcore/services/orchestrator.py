from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal

from app.retailcore.core.error_catalog import AppError, ErrorCatalog
from app.retailcore.core.logging import log_json
from app.retailcore.core.metrics import metrics
from app.retailcore.db.models import PaymentTransaction, Sale
from app.retailcore.repos.payments import PaymentTransactionRepository
from app.retailcore.repos.sales import SaleRepository
from app.retailcore.services import events as event_types
from app.retailcore.services.events import EventPayload, EventService
from app.retailcore.services.payment_gateway import GatewayStatus, PaymentGateway
from app.retailcore.services.payment_intent import (
    AWAITING_CONFIRMATION,
    FAILED,
    SUCCEEDED,
    TIMED_OUT,
    PaymentIntent,
)
from app.retailcore.services.reconciliation import (
    FULFILLMENT_FAILED,
    LATE_CONFIRMATION,
    ReconciliationService,
    SweepReport,
)
from app.retailcore.services.settleables import KIND_STOCK_REQUEST, Settleable

logger = logging.getLogger("retailcore.orchestrator")

MOBILE_MONEY = "MOBILE_MONEY"

OUTCOME_COMPLETED = "completed"
OUTCOME_PAYMENT_FAILED = "payment_failed"
OUTCOME_TIMED_OUT = "timed_out"
OUTCOME_FULFILLMENT_FAILED = "fulfillment_failed"

CALLBACK_APPLIED = "applied"
CALLBACK_PENDING = "pending"
CALLBACK_DUPLICATE = "duplicate"
CALLBACK_LATE = "late_confirmation"
CALLBACK_IGNORED = "ignored"
CALLBACK_UNKNOWN = "unknown"


@dataclass(frozen=True)
class CheckoutOutcome:
    status: str
    external_reference: str
    settleable_id: str
    sale_id: str | None = None
    sale_no: str | None = None
    failure_reason: str | None = None
    receipt_number: str | None = None


@dataclass
class MobileMoneyCheckout:
    settleable: Settleable
    intent: PaymentIntent
    trace_id: str | None = None
    task: asyncio.Task | None = None

    @property
    def external_reference(self) -> str:
        return self.intent.external_reference


@dataclass(frozen=True)
class PaymentStatusView:
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


class PaymentOrchestrator:
    """Drives checkouts for any ``Settleable``.

    Offline methods commit straight away. Mobile money runs a PaymentIntent to
    a terminal state and commits exactly once when it succeeds. At most one
    intent per settleable is active at a time. Confirmations that arrive after
    an intent gave up are not applied; they go to the reconciliation queue.
    """

    def __init__(
        self,
        session_factory,
        gateway: PaymentGateway,
        *,
        poll_interval: float,
        timeout: float,
        lookback_hours: int = 24,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.lookback_hours = lookback_hours
        self._by_reference: dict[str, MobileMoneyCheckout] = {}
        self._by_settleable: dict[str, MobileMoneyCheckout] = {}
        self._starting: set[str] = set()

    @classmethod
    def from_settings(cls, session_factory, gateway: PaymentGateway, settings) -> "PaymentOrchestrator":
        return cls(
            session_factory,
            gateway,
            poll_interval=settings.PAYMENT_POLL_INTERVAL_SEC,
            timeout=settings.PAYMENT_TIMEOUT_SEC,
            lookback_hours=settings.RECONCILIATION_LOOKBACK_HOURS,
        )

    @property
    def active_references(self) -> set[str]:
        return set(self._by_reference)

    def _emit(self, db, event_type: str, entity_type: str, entity_id: str | None, data: dict, trace_id=None) -> None:
        EventService(db).emit(
            EventPayload(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                data=data,
                trace_id=trace_id,
            )
        )

    def _ensure_no_active_intent(self, db, settleable: Settleable) -> None:
        if settleable.id in self._by_settleable or settleable.id in self._starting:
            raise AppError(ErrorCatalog.INTENT_ALREADY_ACTIVE, details={"settleable_id": settleable.id})
        awaiting = PaymentTransactionRepository(db).find_awaiting(settleable.id)
        if awaiting:
            raise AppError(
                ErrorCatalog.INTENT_ALREADY_ACTIVE,
                details={"settleable_id": settleable.id, "external_reference": awaiting[0].external_reference},
            )

    def _ensure_not_settled(self, db, settleable: Settleable, *, payment_method: str | None = None) -> None:
        # a repeat of the same offline checkout resolves to its sale in commit
        sale = SaleRepository(db).get_by_settlement_key(settleable.id)
        if sale is None or (payment_method is not None and sale.payment_method == payment_method):
            return
        raise AppError(
            ErrorCatalog.SETTLEMENT_SOURCE_NOT_PAYABLE,
            details={
                "settleable_id": settleable.id,
                "sale_id": str(sale.id),
                "payment_method": sale.payment_method,
            },
        )

    def checkout_offline(self, settleable: Settleable, payment_method: str, *, trace_id: str | None = None) -> Sale:
        if payment_method == MOBILE_MONEY:
            raise AppError(
                ErrorCatalog.UNSUPPORTED_PAYMENT_METHOD,
                details={"payment_method": payment_method, "message": "use the mobile-money checkout"},
            )
        with self.session_factory() as db:
            self._ensure_no_active_intent(db, settleable)
            self._ensure_not_settled(db, settleable, payment_method=payment_method)
            sale = settleable.on_success(
                db,
                payment_method=payment_method,
                settlement_key=settleable.id,
                payment_reference=None,
            )
            metrics.record_settlement(kind=settleable.kind, method=payment_method)
            self._emit(
                db,
                self._completed_event(settleable),
                settleable.kind,
                settleable.id,
                {"sale_id": str(sale.id), "sale_no": sale.sale_no, "payment_method": payment_method},
                trace_id,
            )
            return sale

    @staticmethod
    def _completed_event(settleable: Settleable) -> str:
        if settleable.kind == KIND_STOCK_REQUEST:
            return event_types.STOCK_REQUEST_PAID
        return event_types.SALE_COMPLETED

    async def start_mobile_money(
        self, settleable: Settleable, payer_phone: str, *, trace_id: str | None = None
    ) -> MobileMoneyCheckout:
        with self.session_factory() as db:
            self._ensure_no_active_intent(db, settleable)
            self._ensure_not_settled(db, settleable)

        intent = PaymentIntent(settleable.amount_due, payer_phone, settleable_key=settleable.id)
        self._starting.add(settleable.id)
        try:
            reference = await intent.request(self.gateway)
            with self.session_factory() as db:
                PaymentTransactionRepository(db).create(
                    PaymentTransaction(
                        external_reference=reference,
                        settleable_key=settleable.id,
                        settleable_kind=settleable.kind,
                        amount=intent.amount,
                        payer_phone=intent.payer_phone,
                        status=AWAITING_CONFIRMATION,
                        details=settleable.describe(),
                    )
                )
            checkout = MobileMoneyCheckout(settleable=settleable, intent=intent, trace_id=trace_id)
            self._by_reference[reference] = checkout
            self._by_settleable[settleable.id] = checkout
        finally:
            self._starting.discard(settleable.id)

        intent.start_polling(self.gateway, interval=self.poll_interval, timeout=self.timeout)
        checkout.task = asyncio.get_running_loop().create_task(
            self._settle_when_done(checkout), name=f"settle-{reference}"
        )
        return checkout

    async def _settle_when_done(self, checkout: MobileMoneyCheckout) -> CheckoutOutcome:
        try:
            state = await checkout.intent.wait()
            return self._conclude(checkout, state)
        finally:
            self._by_reference.pop(checkout.external_reference, None)
            if self._by_settleable.get(checkout.settleable.id) is checkout:
                self._by_settleable.pop(checkout.settleable.id, None)

    def _conclude(self, checkout: MobileMoneyCheckout, state: str) -> CheckoutOutcome:
        intent = checkout.intent
        settleable = checkout.settleable
        reference = intent.external_reference
        with self.session_factory() as db:
            payments = PaymentTransactionRepository(db)
            transaction = payments.get_by_reference(reference)

            if state == SUCCEEDED:
                return self._settle(db, checkout, transaction)

            outcome = OUTCOME_TIMED_OUT if state == TIMED_OUT else OUTCOME_PAYMENT_FAILED
            if transaction is not None:
                transaction.status = state
                transaction.outcome = outcome
                transaction.result_desc = intent.failure_reason
                payments.update(transaction)
            self._emit(
                db,
                event_types.PAYMENT_TIMED_OUT if state == TIMED_OUT else event_types.PAYMENT_FAILED,
                "payment",
                reference,
                {"settleable_id": settleable.id, "reason": intent.failure_reason},
                checkout.trace_id,
            )
            return CheckoutOutcome(
                status=outcome,
                external_reference=reference,
                settleable_id=settleable.id,
                failure_reason=intent.failure_reason,
            )

    def _settle(self, db, checkout: MobileMoneyCheckout, transaction: PaymentTransaction | None) -> CheckoutOutcome:
        intent = checkout.intent
        settleable = checkout.settleable
        reference = intent.external_reference
        payments = PaymentTransactionRepository(db)
        try:
            # settled by another checkout while this payment was in flight
            self._ensure_not_settled(db, settleable)
            sale = settleable.on_success(
                db,
                payment_method=MOBILE_MONEY,
                settlement_key=settleable.id,
                payment_reference=intent.receipt_number or reference,
            )
        except Exception as exc:
            detail = exc.details if isinstance(exc, AppError) else {"type": exc.__class__.__name__}
            reason = f"Payment succeeded but order could not be fulfilled: {exc}"
            logger.error(
                "fulfillment failed after payment reference=%s settleable=%s detail=%s",
                reference,
                settleable.id,
                detail,
            )
            metrics.increment_fulfillment_failure()
            if transaction is not None:
                transaction.status = SUCCEEDED
                transaction.outcome = OUTCOME_FULFILLMENT_FAILED
                transaction.receipt_number = intent.receipt_number
                transaction.result_desc = reason
                payments.update(transaction)
                ReconciliationService(db).enqueue(
                    FULFILLMENT_FAILED,
                    transaction,
                    detail=str(detail),
                    receipt_number=intent.receipt_number,
                )
            self._emit(
                db,
                event_types.PAYMENT_FULFILLMENT_FAILED,
                "payment",
                reference,
                {"settleable_id": settleable.id, "detail": detail},
                checkout.trace_id,
            )
            return CheckoutOutcome(
                status=OUTCOME_FULFILLMENT_FAILED,
                external_reference=reference,
                settleable_id=settleable.id,
                failure_reason=reason,
                receipt_number=intent.receipt_number,
            )

        if transaction is not None:
            transaction.status = SUCCEEDED
            transaction.outcome = OUTCOME_COMPLETED
            transaction.receipt_number = intent.receipt_number
            transaction.sale_id = sale.id
            payments.update(transaction)
        metrics.record_settlement(kind=settleable.kind, method=MOBILE_MONEY)
        self._emit(
            db,
            self._completed_event(settleable),
            settleable.kind,
            settleable.id,
            {"sale_id": str(sale.id), "sale_no": sale.sale_no, "external_reference": reference},
            checkout.trace_id,
        )
        return CheckoutOutcome(
            status=OUTCOME_COMPLETED,
            external_reference=reference,
            settleable_id=settleable.id,
            sale_id=str(sale.id),
            sale_no=sale.sale_no,
            receipt_number=intent.receipt_number,
        )

    def status(self, external_reference: str) -> PaymentStatusView:
        with self.session_factory() as db:
            transaction = PaymentTransactionRepository(db).get_by_reference(external_reference)
        checkout = self._by_reference.get(external_reference)
        if transaction is None:
            raise AppError(ErrorCatalog.PAYMENT_NOT_FOUND, details={"external_reference": external_reference})
        if checkout is not None and not checkout.intent.is_terminal:
            intent = checkout.intent
            return PaymentStatusView(
                external_reference=external_reference,
                settleable_key=transaction.settleable_key,
                settleable_kind=transaction.settleable_kind,
                state=intent.state,
                active=True,
                amount=intent.amount,
            )
        return PaymentStatusView(
            external_reference=external_reference,
            settleable_key=transaction.settleable_key,
            settleable_kind=transaction.settleable_kind,
            state=transaction.status,
            active=checkout is not None,
            amount=transaction.amount,
            outcome=transaction.outcome,
            failure_reason=transaction.result_desc,
            receipt_number=transaction.receipt_number,
            sale_id=str(transaction.sale_id) if transaction.sale_id else None,
        )

    async def cancel(self, external_reference: str) -> CheckoutOutcome:
        checkout = self._by_reference.get(external_reference)
        if checkout is None or not checkout.intent.cancel():
            with self.session_factory() as db:
                transaction = PaymentTransactionRepository(db).get_by_reference(external_reference)
            if transaction is None:
                raise AppError(ErrorCatalog.PAYMENT_NOT_FOUND, details={"external_reference": external_reference})
            raise AppError(
                ErrorCatalog.INTENT_NOT_ACTIVE,
                details={"external_reference": external_reference, "state": transaction.status},
            )
        logger.info("payment intent cancelled reference=%s", external_reference)
        return await checkout.task

    async def wait_for_outcome(self, external_reference: str) -> CheckoutOutcome | None:
        checkout = self._by_reference.get(external_reference)
        if checkout is None or checkout.task is None:
            return None
        return await asyncio.shield(checkout.task)

    def handle_callback(self, external_reference: str, status: GatewayStatus) -> str:
        """Route a provider push for ``external_reference``.

        A live intent takes the status through the same transition as polling.
        Otherwise a completed confirmation is either a duplicate of a success
        (ignored, never committed twice) or a late confirmation (queued).
        """
        checkout = self._by_reference.get(external_reference)
        if checkout is not None and not checkout.intent.is_terminal:
            if checkout.intent.apply_status(status):
                return CALLBACK_APPLIED
            return CALLBACK_PENDING

        with self.session_factory() as db:
            payments = PaymentTransactionRepository(db)
            transaction = payments.get_by_reference(external_reference)
            if transaction is None:
                logger.warning("callback for unknown reference=%s state=%s", external_reference, status.state)
                return CALLBACK_UNKNOWN
            if status.state != "completed":
                return CALLBACK_IGNORED
            succeeded = transaction.status == SUCCEEDED or (
                checkout is not None and checkout.intent.state == SUCCEEDED
            )
            if succeeded:
                logger.info("duplicate confirmation ignored reference=%s", external_reference)
                return CALLBACK_DUPLICATE

            if status.receipt_number and not transaction.receipt_number:
                transaction.receipt_number = status.receipt_number
                payments.update(transaction)
            ReconciliationService(db).enqueue(
                LATE_CONFIRMATION,
                transaction,
                detail=f"Provider confirmed after local {transaction.status.lower()}",
                receipt_number=status.receipt_number,
            )
            metrics.increment_late_confirmation()
            self._emit(
                db,
                event_types.PAYMENT_LATE_CONFIRMATION,
                "payment",
                external_reference,
                {"settleable_id": transaction.settleable_key, "local_status": transaction.status},
            )
            log_json(
                logger,
                {
                    "event": "late_confirmation",
                    "external_reference": external_reference,
                    "local_status": transaction.status,
                },
                level=logging.WARNING,
            )
            return CALLBACK_LATE

    async def sweep(self) -> SweepReport:
        with self.session_factory() as db:
            return await ReconciliationService(db).sweep(
                self.gateway,
                active_references=self.active_references,
                timeout_sec=self.timeout,
                lookback_hours=self.lookback_hours,
            )

    async def shutdown(self) -> None:
        checkouts = list(self._by_reference.values())
        for checkout in checkouts:
            await checkout.intent.aclose()
            if checkout.task is not None:
                checkout.task.cancel()
        await asyncio.gather(*(c.task for c in checkouts if c.task is not None), return_exceptions=True)
        self._by_reference.clear()
        self._by_settleable.clear()
