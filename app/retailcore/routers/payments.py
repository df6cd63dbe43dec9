from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from app.retailcore.core.deps import get_orchestrator, get_settings, trace_id_of
from app.retailcore.core.error_catalog import AppError, ErrorCatalog
from app.retailcore.core.logging import log_json
from app.retailcore.db.session import get_db
from app.retailcore.repos.payments import PaymentTransactionRepository
from app.retailcore.routers.pos_sales import build_checkout_settleable
from app.retailcore.schemas.payments import (
    CallbackAck,
    MobileMoneyCheckoutRequest,
    PaymentStatusResponse,
    PaymentTransactionListResponse,
    PaymentTransactionResponse,
)
from app.retailcore.services.idempotency import begin_idempotent_request
from app.retailcore.services.mpesa import parse_stk_callback
from app.retailcore.services.orchestrator import PaymentStatusView

logger = logging.getLogger("retailcore.payments")

router = APIRouter()


def payment_status_response(view: PaymentStatusView) -> PaymentStatusResponse:
    return PaymentStatusResponse(
        external_reference=view.external_reference,
        settleable_key=view.settleable_key,
        settleable_kind=view.settleable_kind,
        state=view.state,
        active=view.active,
        amount=view.amount,
        outcome=view.outcome,
        failure_reason=view.failure_reason,
        receipt_number=view.receipt_number,
        sale_id=view.sale_id,
    )


def _transaction_response(row) -> PaymentTransactionResponse:
    return PaymentTransactionResponse(
        id=str(row.id),
        external_reference=row.external_reference,
        settleable_key=row.settleable_key,
        settleable_kind=row.settleable_kind,
        amount=row.amount,
        payer_phone=row.payer_phone,
        status=row.status,
        outcome=row.outcome,
        result_desc=row.result_desc,
        receipt_number=row.receipt_number,
        sale_id=str(row.sale_id) if row.sale_id else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


@router.post("/payments/mobile-money", response_model=PaymentStatusResponse, status_code=202)
async def start_mobile_money(
    request: Request,
    payload: MobileMoneyCheckoutRequest,
    db=Depends(get_db),
    orchestrator=Depends(get_orchestrator),
    settings=Depends(get_settings),
):
    if not payload.transaction_id:
        raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "transaction_id is required"})
    context, replay = begin_idempotent_request(request, db, payload.model_dump(mode="json"))
    if replay:
        return replay.to_response()

    settleable = build_checkout_settleable(db, payload, settings)
    checkout = await orchestrator.start_mobile_money(
        settleable, payload.payer_phone, trace_id=trace_id_of(request)
    )
    response = payment_status_response(orchestrator.status(checkout.external_reference))
    context.record_success(status_code=202, response_body=response.model_dump(mode="json"))
    return response


@router.get("/payments", response_model=PaymentTransactionListResponse)
def list_payments(
    status: str | None = None,
    page: int = 1,
    page_size: int = 50,
    db=Depends(get_db),
    settings=Depends(get_settings),
):
    max_page_size = settings.PAYMENTS_LIST_MAX_PAGE_SIZE
    if page < 1 or page_size < 1 or page_size > max_page_size:
        raise AppError(
            ErrorCatalog.VALIDATION_ERROR,
            details={"message": f"page must be >= 1 and page_size between 1 and {max_page_size}"},
        )
    rows, total = PaymentTransactionRepository(db).list_transactions(status=status, page=page, page_size=page_size)
    return PaymentTransactionListResponse(
        rows=[_transaction_response(row) for row in rows],
        page=page,
        page_size=page_size,
        total=total,
    )


@router.post("/payments/callback", response_model=CallbackAck)
async def provider_callback(request: Request, orchestrator=Depends(get_orchestrator)):
    # always acknowledged
    try:
        body = await request.json()
    except ValueError:
        body = None
    parsed = parse_stk_callback(body if isinstance(body, dict) else None)
    if parsed is None:
        logger.warning("invalid payment callback body received")
        return CallbackAck()
    reference, status = parsed
    decision = orchestrator.handle_callback(reference, status)
    log_json(
        logger,
        {
            "event": "payment_callback",
            "external_reference": reference,
            "state": status.state,
            "decision": decision,
            "trace_id": trace_id_of(request),
        },
    )
    return CallbackAck()


@router.get("/payments/{reference}", response_model=PaymentStatusResponse)
async def get_payment(reference: str, orchestrator=Depends(get_orchestrator)):
    return payment_status_response(orchestrator.status(reference))


@router.post("/payments/{reference}/cancel", response_model=PaymentStatusResponse)
async def cancel_payment(reference: str, orchestrator=Depends(get_orchestrator)):
    await orchestrator.cancel(reference)
    return payment_status_response(orchestrator.status(reference))

