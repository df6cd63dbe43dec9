from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Request

from app.retailcore.core.deps import get_orchestrator, get_settings, trace_id_of
from app.retailcore.core.error_catalog import AppError, ErrorCatalog
from app.retailcore.db.models import Sale
from app.retailcore.db.session import get_db
from app.retailcore.repos.sales import SaleQueryFilters, SaleRepository
from app.retailcore.schemas.sales import (
    CartCheckoutBase,
    PosSaleCreateRequest,
    SaleItemResponse,
    SaleListResponse,
    SaleResponse,
)
from app.retailcore.services.idempotency import begin_idempotent_request
from app.retailcore.services.pricing import DiscountSpec
from app.retailcore.services.settleables import (
    CartLineInput,
    CartSettlement,
    build_cart_settlement,
    build_invoice_settlement,
)

router = APIRouter()

MAX_PAGE_SIZE = 200


def _optional_str(value) -> str | None:
    return str(value) if value is not None else None


def sale_response(repo: SaleRepository, sale: Sale) -> SaleResponse:
    items = repo.get_items(sale.id)
    return SaleResponse(
        id=str(sale.id),
        sale_no=sale.sale_no,
        settlement_key=sale.settlement_key,
        customer_id=str(sale.customer_id),
        branch_id=str(sale.branch_id),
        subtotal_amount=Decimal(str(sale.subtotal_amount)),
        discount_amount=Decimal(str(sale.discount_amount)),
        tax_amount=Decimal(str(sale.tax_amount)),
        total_amount=Decimal(str(sale.total_amount)),
        payment_method=sale.payment_method,
        payment_reference=sale.payment_reference,
        invoice_id=_optional_str(sale.invoice_id),
        stock_request_id=_optional_str(sale.stock_request_id),
        created_at=sale.created_at,
        items=[
            SaleItemResponse(
                id=str(item.id),
                product_id=str(item.product_id),
                position=item.position,
                quantity=item.quantity,
                unit_price=Decimal(str(item.unit_price)),
                line_total=Decimal(str(item.line_total)),
            )
            for item in items
        ],
    )


def build_checkout_settleable(db, payload: CartCheckoutBase, settings) -> CartSettlement:
    if payload.invoice_id is not None:
        return build_invoice_settlement(
            db,
            invoice_id=payload.invoice_id,
            tax_rate_percent=settings.TAX_RATE_PERCENT,
            apply_tax=payload.apply_tax,
            expected_total=payload.expected_total,
        )
    if payload.customer_id is None or payload.branch_id is None:
        raise AppError(
            ErrorCatalog.VALIDATION_ERROR,
            details={"message": "customer_id and branch_id are required unless paying an invoice"},
        )
    discount = None
    if payload.discount is not None:
        discount = DiscountSpec(kind=payload.discount.kind, value=payload.discount.value)
    return build_cart_settlement(
        db,
        transaction_id=payload.transaction_id,
        customer_id=payload.customer_id,
        branch_id=payload.branch_id,
        lines=[
            CartLineInput(product_id=line.product_id, quantity=line.quantity, unit_price=line.unit_price)
            for line in payload.lines
        ],
        discount=discount,
        tax_rate_percent=settings.TAX_RATE_PERCENT,
        apply_tax=payload.apply_tax,
        expected_total=payload.expected_total,
    )


@router.get("/pos/sales", response_model=SaleListResponse)
def list_sales(
    branch_id: UUID | None = None,
    customer_id: UUID | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    page: int = 1,
    page_size: int = 50,
    db=Depends(get_db),
):
    if page < 1 or page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise AppError(
            ErrorCatalog.VALIDATION_ERROR,
            details={"message": f"page must be >= 1 and page_size between 1 and {MAX_PAGE_SIZE}"},
        )
    repo = SaleRepository(db)
    rows, total = repo.list_sales(
        SaleQueryFilters(branch_id=branch_id, customer_id=customer_id, from_date=from_date, to_date=to_date),
        page=page,
        page_size=page_size,
    )
    return SaleListResponse(
        rows=[sale_response(repo, sale) for sale in rows],
        page=page,
        page_size=page_size,
        total=total,
    )


@router.post("/pos/sales", response_model=SaleResponse, status_code=201)
def create_sale(
    request: Request,
    payload: PosSaleCreateRequest,
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
    sale = orchestrator.checkout_offline(settleable, payload.payment_method, trace_id=trace_id_of(request))

    response = sale_response(SaleRepository(db), sale)
    context.record_success(status_code=201, response_body=response.model_dump(mode="json"))
    return response


@router.get("/pos/sales/{sale_id}", response_model=SaleResponse)
def get_sale(sale_id: UUID, db=Depends(get_db)):
    repo = SaleRepository(db)
    sale = repo.get_by_id(sale_id)
    if sale is None:
        raise AppError(ErrorCatalog.SALE_NOT_FOUND, details={"sale_id": str(sale_id)})
    return sale_response(repo, sale)
