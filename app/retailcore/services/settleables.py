from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from app.retailcore.core.error_catalog import AppError, ErrorCatalog
from app.retailcore.db.models import Sale
from app.retailcore.repos.catalog import CatalogRepository
from app.retailcore.repos.settlement_sources import (
    INVOICE_UNPAID,
    STOCK_REQUEST_APPROVED,
    SettlementSource,
    SettlementSourceRepository,
)
from app.retailcore.services.pricing import CartLine, DiscountSpec, PricedTotals, compute_totals, money
from app.retailcore.services.sale_commit import CommitRequest, SaleCommitService

KIND_POS_SALE = "pos_sale"
KIND_STOCK_REQUEST = "stock_request"


class Settleable(Protocol):
    """What the orchestrator needs from anything it can take payment for."""

    id: str
    kind: str

    @property
    def amount_due(self) -> Decimal:
        ...

    def on_success(self, db, *, payment_method: str, settlement_key: str, payment_reference: str | None) -> Sale:
        ...

    def describe(self) -> dict:
        ...


@dataclass(frozen=True)
class _LineSettlement:
    id: str
    lines: tuple[CartLine, ...]
    totals: PricedTotals
    customer_id: UUID
    branch_id: UUID

    @property
    def amount_due(self) -> Decimal:
        return self.totals.total_amount

    def _source(self) -> SettlementSource | None:
        return None

    def on_success(self, db, *, payment_method: str, settlement_key: str, payment_reference: str | None) -> Sale:
        return SaleCommitService(db).commit(
            CommitRequest(
                lines=self.lines,
                totals=self.totals,
                customer_id=self.customer_id,
                branch_id=self.branch_id,
                payment_method=payment_method,
                settlement_key=settlement_key,
                payment_reference=payment_reference,
                source=self._source(),
            )
        )

    def describe(self) -> dict:
        return {
            "customer_id": str(self.customer_id),
            "branch_id": str(self.branch_id),
            "lines": [
                {
                    "product_id": str(line.product_id),
                    "quantity": line.quantity,
                    "unit_price": format(line.unit_price, "f"),
                }
                for line in self.lines
            ],
            "subtotal": format(self.totals.subtotal, "f"),
            "discount_amount": format(self.totals.discount_amount, "f"),
            "tax_amount": format(self.totals.tax_amount, "f"),
            "total_amount": format(self.totals.total_amount, "f"),
        }


@dataclass(frozen=True)
class CartSettlement(_LineSettlement):
    invoice_id: UUID | None = None
    kind: str = KIND_POS_SALE

    def _source(self) -> SettlementSource | None:
        if self.invoice_id is None:
            return None
        return SettlementSource(kind="invoice", id=self.invoice_id)

    def describe(self) -> dict:
        details = super().describe()
        details["invoice_id"] = str(self.invoice_id) if self.invoice_id else None
        return details


@dataclass(frozen=True)
class StockRequestSettlement(_LineSettlement):
    stock_request_id: UUID | None = None
    kind: str = KIND_STOCK_REQUEST

    def _source(self) -> SettlementSource | None:
        return SettlementSource(kind="stock_request", id=self.stock_request_id)

    def describe(self) -> dict:
        details = super().describe()
        details["stock_request_id"] = str(self.stock_request_id)
        return details


@dataclass(frozen=True)
class CartLineInput:
    product_id: UUID
    quantity: int
    unit_price: Decimal | None = None


def _check_expected_total(totals: PricedTotals, expected_total: Decimal | None) -> None:
    if expected_total is None:
        return
    if money(expected_total) != totals.total_amount:
        raise AppError(
            ErrorCatalog.TOTALS_MISMATCH,
            details={
                "expected_total": format(money(expected_total), "f"),
                "total_amount": format(totals.total_amount, "f"),
            },
        )


def _require_customer_and_branch(catalog: CatalogRepository, customer_id, branch_id) -> None:
    if catalog.get_customer(customer_id) is None:
        raise AppError(ErrorCatalog.CUSTOMER_NOT_FOUND, details={"customer_id": str(customer_id)})
    if catalog.get_branch(branch_id) is None:
        raise AppError(ErrorCatalog.BRANCH_NOT_FOUND, details={"branch_id": str(branch_id)})


def build_cart_settlement(
    db,
    *,
    transaction_id: str,
    customer_id: UUID,
    branch_id: UUID,
    lines: list[CartLineInput],
    discount: DiscountSpec | None,
    tax_rate_percent: Decimal,
    apply_tax: bool = True,
    expected_total: Decimal | None = None,
) -> CartSettlement:
    if not transaction_id:
        raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "transaction_id is required"})
    if not lines:
        raise AppError(ErrorCatalog.EMPTY_CART)

    catalog = CatalogRepository(db)
    _require_customer_and_branch(catalog, customer_id, branch_id)
    products = catalog.get_products([line.product_id for line in lines])

    requested: dict[str, int] = {}
    cart_lines = []
    for line in lines:
        if line.quantity < 1:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "quantity must be at least 1", "quantity": line.quantity},
            )
        product = products.get(str(line.product_id))
        if product is None:
            raise AppError(ErrorCatalog.PRODUCT_NOT_FOUND, details={"product_id": str(line.product_id)})
        unit_price = money(product.retail_price if line.unit_price is None else line.unit_price)
        if unit_price < 0:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "unit_price must be >= 0", "unit_price": format(unit_price, "f")},
            )
        key = str(product.id)
        requested[key] = requested.get(key, 0) + line.quantity
        if requested[key] > product.stock:
            raise AppError(
                ErrorCatalog.INSUFFICIENT_STOCK,
                details={
                    "product_id": key,
                    "product_name": product.name,
                    "available": product.stock,
                    "requested": requested[key],
                },
            )
        cart_lines.append(CartLine(product_id=product.id, quantity=line.quantity, unit_price=unit_price))

    totals = compute_totals(cart_lines, discount, tax_rate_percent, apply_tax)
    _check_expected_total(totals, expected_total)
    return CartSettlement(
        id=f"cart:{transaction_id}",
        lines=tuple(cart_lines),
        totals=totals,
        customer_id=customer_id,
        branch_id=branch_id,
    )


def build_invoice_settlement(
    db,
    *,
    invoice_id: UUID,
    tax_rate_percent: Decimal,
    apply_tax: bool = True,
    expected_total: Decimal | None = None,
) -> CartSettlement:
    """Invoice payment: lines come from the invoice and no discount applies."""
    sources = SettlementSourceRepository(db)
    invoice = sources.get_invoice(invoice_id)
    if invoice is None:
        raise AppError(ErrorCatalog.INVOICE_NOT_FOUND, details={"invoice_id": str(invoice_id)})
    if invoice.status != INVOICE_UNPAID:
        raise AppError(
            ErrorCatalog.SETTLEMENT_SOURCE_NOT_PAYABLE,
            details={"kind": "invoice", "id": str(invoice_id), "status": invoice.status},
        )
    items = sources.get_invoice_items(invoice_id)
    if not items:
        raise AppError(ErrorCatalog.EMPTY_CART, details={"invoice_id": str(invoice_id)})

    cart_lines = tuple(
        CartLine(product_id=item.product_id, quantity=item.quantity, unit_price=money(item.unit_price))
        for item in items
    )
    totals = compute_totals(cart_lines, None, tax_rate_percent, apply_tax)
    _check_expected_total(totals, expected_total)
    return CartSettlement(
        id=f"invoice:{invoice.id}",
        lines=cart_lines,
        totals=totals,
        customer_id=invoice.customer_id,
        branch_id=invoice.branch_id,
        invoice_id=invoice.id,
    )


def build_stock_request_settlement(
    db,
    *,
    stock_request_id: UUID,
    tax_rate_percent: Decimal,
    apply_tax: bool,
) -> StockRequestSettlement:
    sources = SettlementSourceRepository(db)
    stock_request = sources.get_stock_request(stock_request_id)
    if stock_request is None:
        raise AppError(ErrorCatalog.STOCK_REQUEST_NOT_FOUND, details={"stock_request_id": str(stock_request_id)})
    if stock_request.status != STOCK_REQUEST_APPROVED:
        raise AppError(
            ErrorCatalog.SETTLEMENT_SOURCE_NOT_PAYABLE,
            details={"kind": "stock_request", "id": str(stock_request_id), "status": stock_request.status},
        )
    items = sources.get_stock_request_items(stock_request_id)
    if not items:
        raise AppError(ErrorCatalog.EMPTY_CART, details={"stock_request_id": str(stock_request_id)})

    cart_lines = tuple(
        CartLine(
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price=money(item.wholesale_price_at_request),
        )
        for item in items
    )
    return StockRequestSettlement(
        id=f"stock_request:{stock_request.id}",
        lines=cart_lines,
        totals=compute_totals(cart_lines, None, tax_rate_percent, apply_tax),
        customer_id=stock_request.customer_id,
        branch_id=stock_request.branch_id,
        stock_request_id=stock_request.id,
    )
