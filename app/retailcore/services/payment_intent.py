from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from decimal import Decimal

from app.retailcore.core.error_catalog import AppError, ErrorCatalog
from app.retailcore.core.logging import log_json
from app.retailcore.core.metrics import metrics
from app.retailcore.services.payment_gateway import (
    GatewayError,
    GatewayStatus,
    PaymentGateway,
    normalize_phone,
    validate_amount,
)

logger = logging.getLogger("retailcore.payment_intent")

IDLE = "IDLE"
REQUESTED = "REQUESTED"
AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
SUCCEEDED = "SUCCEEDED"
FAILED = "FAILED"
TIMED_OUT = "TIMED_OUT"

TERMINAL_STATES = frozenset({SUCCEEDED, FAILED, TIMED_OUT})

CANCELLED_BY_OPERATOR = "Cancelled by operator"
TIMEOUT_REASON = "No confirmation received before timeout"


class PaymentIntent:
    """One mobile-money attempt.

    IDLE -> REQUESTED -> AWAITING_CONFIRMATION -> SUCCEEDED | FAILED | TIMED_OUT

    The intent owns its polling task and the event used to stop it. Every
    terminal transition goes through ``_finish`` so the first one wins and
    anything arriving later is ignored. Observers ``await intent.wait()``.
    """

    def __init__(self, amount: Decimal, payer_phone: str, *, settleable_key: str | None = None):
        self.amount = Decimal(str(amount))
        self.payer_phone = payer_phone
        self.settleable_key = settleable_key
        self.state = IDLE
        self.external_reference: str | None = None
        self.failure_reason: str | None = None
        self.receipt_number: str | None = None
        self.created_at = datetime.utcnow()
        self.finished_at: datetime | None = None
        self.poll_count = 0
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._result: asyncio.Future | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    async def request(self, gateway: PaymentGateway) -> str:
        if self.state != IDLE:
            raise AppError(
                ErrorCatalog.INTENT_ALREADY_ACTIVE,
                details={"state": self.state, "external_reference": self.external_reference},
            )
        validate_amount(self.amount)
        self.payer_phone = normalize_phone(self.payer_phone)

        self.state = REQUESTED
        try:
            reference = await gateway.initiate(self.amount, self.payer_phone)
        except GatewayError as exc:
            self.state = IDLE
            logger.warning("payment initiation failed settleable=%s error=%s", self.settleable_key, exc)
            raise AppError(ErrorCatalog.PAYMENT_INITIATION_FAILED, details={"message": str(exc)}) from exc
        except BaseException:
            self.state = IDLE
            raise

        self.external_reference = reference
        self.state = AWAITING_CONFIRMATION
        log_json(
            logger,
            {
                "event": "payment_intent_awaiting",
                "external_reference": reference,
                "settleable_key": self.settleable_key,
                "amount": format(self.amount, "f"),
            },
        )
        return reference

    def start_polling(self, gateway: PaymentGateway, *, interval: float, timeout: float) -> asyncio.Task:
        if self.state != AWAITING_CONFIRMATION:
            raise AppError(ErrorCatalog.INTENT_NOT_ACTIVE, details={"state": self.state})
        if self._task is not None:
            return self._task
        self._task = asyncio.get_running_loop().create_task(
            self._poll(gateway, interval, timeout),
            name=f"payment-intent-{self.external_reference}",
        )
        return self._task

    async def _poll(self, gateway: PaymentGateway, interval: float, timeout: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        try:
            while not self.is_terminal:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=min(interval, remaining))
                except asyncio.TimeoutError:
                    pass
                if self.is_terminal:
                    return
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                self.poll_count += 1
                try:
                    status = await asyncio.wait_for(gateway.query_status(self.external_reference), timeout=remaining)
                except asyncio.TimeoutError:
                    break
                except GatewayError as exc:
                    logger.warning("status query failed reference=%s error=%s", self.external_reference, exc)
                    continue
                self.apply_status(status)
        except Exception as exc:
            logger.exception("polling crashed reference=%s", self.external_reference)
            self._finish(FAILED, reason=f"Polling error: {exc}")
            return
        self._finish(TIMED_OUT, reason=TIMEOUT_REASON)

    def apply_status(self, status: GatewayStatus) -> bool:
        """Feed a provider status in; returns True only if it ended the intent."""
        if self.state != AWAITING_CONFIRMATION:
            return False
        if status.state == "completed":
            return self._finish(SUCCEEDED, receipt_number=status.receipt_number)
        if status.state == "failed":
            return self._finish(FAILED, reason=status.detail or "Payment failed")
        return False

    def cancel(self, reason: str = CANCELLED_BY_OPERATOR) -> bool:
        if self.state != AWAITING_CONFIRMATION:
            return False
        return self._finish(FAILED, reason=reason)

    def _finish(self, state: str, *, reason: str | None = None, receipt_number: str | None = None) -> bool:
        if self.is_terminal:
            return False
        self.state = state
        self.failure_reason = reason
        if receipt_number:
            self.receipt_number = receipt_number
        self.finished_at = datetime.utcnow()
        self._stop.set()
        if self._result is not None and not self._result.done():
            self._result.set_result(state)
        metrics.record_intent_outcome(state)
        log_json(
            logger,
            {
                "event": "payment_intent_finished",
                "external_reference": self.external_reference,
                "settleable_key": self.settleable_key,
                "state": state,
                "reason": reason,
                "polls": self.poll_count,
            },
        )
        return True

    async def wait(self) -> str:
        if self.is_terminal:
            return self.state
        if self._result is None:
            self._result = asyncio.get_running_loop().create_future()
        return await asyncio.shield(self._result)

    async def aclose(self) -> None:
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
