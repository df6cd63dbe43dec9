import logging
from dataclasses import dataclass
from datetime import datetime

from app.retailcore.core.logging import log_json
from app.retailcore.db.models import SettlementEvent

logger = logging.getLogger("retailcore.events")

SALE_COMPLETED = "sale.completed"
STOCK_REQUEST_PAID = "stock_request.paid"
PAYMENT_FAILED = "payment.failed"
PAYMENT_TIMED_OUT = "payment.timed_out"
PAYMENT_FULFILLMENT_FAILED = "payment.fulfillment_failed"
PAYMENT_LATE_CONFIRMATION = "payment.late_confirmation"


@dataclass
class EventPayload:
    event_type: str
    entity_type: str
    entity_id: str | None
    data: dict | None = None
    trace_id: str | None = None


class EventService:
    """One-way sink for settlement events.

    Strategy: failures are logged and swallowed; callers never wait on or depend on
    the sink.
    """

    def __init__(self, db):
        self.db = db

    def emit(self, payload: EventPayload) -> None:
        log_json(
            logger,
            {
                "event": payload.event_type,
                "entity_type": payload.entity_type,
                "entity_id": payload.entity_id,
                "trace_id": payload.trace_id,
                "data": payload.data,
            },
        )
        try:
            self.db.add(
                SettlementEvent(
                    event_type=payload.event_type,
                    entity_type=payload.entity_type,
                    entity_id=payload.entity_id,
                    trace_id=payload.trace_id,
                    payload=payload.data,
                    created_at=datetime.utcnow(),
                )
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(
                "Failed to write settlement event",
                extra={"event_type": payload.event_type, "entity_id": payload.entity_id},
            )
