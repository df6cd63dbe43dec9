from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.retailcore.core.deps import get_orchestrator, get_settings, trace_id_of
from app.retailcore.db.session import get_db
from app.retailcore.repos.sales import SaleRepository
from app.retailcore.repos.settlement_sources import SettlementSourceRepository
from app.retailcore.routers.payments import payment_status_response
from app.retailcore.routers.pos_sales import sale_response
from app.retailcore.schemas.stock_requests import StockRequestPaymentRequest, StockRequestPaymentResponse
from app.retailcore.services.orchestrator import MOBILE_MONEY
from app.retailcore.services.settleables import build_stock_request_settlement

router = APIRouter()


@router.post("/stock-requests/{stock_request_id}/payments", response_model=StockRequestPaymentResponse)
async def pay_stock_request(
    request: Request,
    stock_request_id: UUID,
    payload: StockRequestPaymentRequest,
    db=Depends(get_db),
    orchestrator=Depends(get_orchestrator),
    settings=Depends(get_settings),
):
    settleable = build_stock_request_settlement(
        db,
        stock_request_id=stock_request_id,
        tax_rate_percent=settings.TAX_RATE_PERCENT,
        apply_tax=settings.B2B_APPLY_TAX,
    )

    if payload.payment_method == MOBILE_MONEY:
        checkout = await orchestrator.start_mobile_money(
            settleable, payload.payer_phone, trace_id=trace_id_of(request)
        )
        response = StockRequestPaymentResponse(
            stock_request_id=str(stock_request_id),
            status="AWAITING_PAYMENT",
            payment=payment_status_response(orchestrator.status(checkout.external_reference)),
        )
        return JSONResponse(status_code=202, content=response.model_dump(mode="json"))

    sale = orchestrator.checkout_offline(settleable, payload.payment_method, trace_id=trace_id_of(request))
    stock_request = SettlementSourceRepository(db).get_stock_request(stock_request_id)
    db.refresh(stock_request)
    return StockRequestPaymentResponse(
        stock_request_id=str(stock_request_id),
        status=stock_request.status,
        sale=sale_response(SaleRepository(db), sale),
    )
