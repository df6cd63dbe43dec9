from fastapi import APIRouter, Depends

from app.retailcore.core.deps import get_settings
from app.retailcore.core.error_catalog import AppError, ErrorCatalog
from app.retailcore.schemas.pricing import QuoteRequest, QuoteResponse
from app.retailcore.services.pricing import CartLine, DiscountSpec, compute_totals

router = APIRouter()


@router.post("/pricing/quote", response_model=QuoteResponse)
def quote(payload: QuoteRequest, settings=Depends(get_settings)):
    if not payload.lines:
        raise AppError(ErrorCatalog.EMPTY_CART)
    for line in payload.lines:
        if line.quantity < 1:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "quantity must be at least 1", "quantity": line.quantity},
            )
        if line.unit_price < 0:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "unit_price must be >= 0", "unit_price": str(line.unit_price)},
            )
    rate = settings.TAX_RATE_PERCENT if payload.tax_rate_percent is None else payload.tax_rate_percent
    discount = DiscountSpec(kind=payload.discount.kind, value=payload.discount.value) if payload.discount else None
    lines = [
        CartLine(product_id=line.product_id, quantity=line.quantity, unit_price=line.unit_price)
        for line in payload.lines
    ]
    totals = compute_totals(lines, discount, rate, payload.apply_tax)
    return QuoteResponse(
        subtotal=totals.subtotal,
        discount_amount=totals.discount_amount,
        tax_amount=totals.tax_amount,
        total_amount=totals.total_amount,
        tax_rate_percent=rate,
    )
