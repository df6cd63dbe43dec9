from decimal import Decimal

import pytest
from sqlalchemy import select

from app.retailcore.core.error_catalog import AppError
from app.retailcore.db.models import Invoice, SaleItem
from app.retailcore.repos.settlement_sources import SettlementSourceRepository
from app.retailcore.services.pricing import CartLine, compute_totals
from app.retailcore.services.sale_commit import CommitRequest, SaleCommitService
from app.retailcore.services.settleables import build_invoice_settlement
from app.retailcore.services.stock_ledger import InsufficientStockError
from tests.settlement_helpers import (
    create_branch,
    create_customer,
    create_invoice,
    create_product,
    sale_count,
    stock_of,
)


def _request(customer, branch, lines, *, settlement_key: str, payment_method: str = "CASH") -> CommitRequest:
    cart_lines = tuple(
        CartLine(product_id=product.id, quantity=qty, unit_price=Decimal(product.retail_price))
        for product, qty in lines
    )
    return CommitRequest(
        lines=cart_lines,
        totals=compute_totals(cart_lines, None, Decimal("16"), True),
        customer_id=customer.id,
        branch_id=branch.id,
        payment_method=payment_method,
        settlement_key=settlement_key,
    )


def test_commit_writes_sale_and_decrements_stock(session_factory):
    with session_factory() as db:
        customer, branch = create_customer(db), create_branch(db)
        brake = create_product(db, part_number="BRK-200", stock=5, retail_price="500.00")
        filter_ = create_product(db, part_number="FLT-200", stock=3, retail_price="250.00")

        sale = SaleCommitService(db).commit(
            _request(customer, branch, [(brake, 2), (filter_, 1)], settlement_key="cart:txn-200")
        )

        assert sale.sale_no.startswith("SALE-")
        assert sale.settlement_key == "cart:txn-200"
        assert sale.total_amount == Decimal("1450.00")
        assert stock_of(db, brake.id) == 3
        assert stock_of(db, filter_.id) == 2
        items = db.execute(select(SaleItem).where(SaleItem.sale_id == sale.id).order_by(SaleItem.position)).scalars()
        assert [(item.quantity, item.line_total) for item in items] == [
            (2, Decimal("1000.00")),
            (1, Decimal("250.00")),
        ]


def test_commit_is_idempotent_per_settlement_key(session_factory):
    with session_factory() as db:
        customer, branch = create_customer(db), create_branch(db)
        product = create_product(db, part_number="BRK-201", stock=5)
        service = SaleCommitService(db)

        first = service.commit(_request(customer, branch, [(product, 2)], settlement_key="ws_CO_201"))
        second = service.commit(_request(customer, branch, [(product, 2)], settlement_key="ws_CO_201"))

        assert first.id == second.id
        assert sale_count(db) == 1
        assert stock_of(db, product.id) == 3


def test_commit_rejects_oversell_without_side_effects(session_factory):
    with session_factory() as db:
        customer, branch = create_customer(db), create_branch(db)
        available = create_product(db, part_number="BRK-202", stock=5)
        scarce = create_product(db, part_number="BRK-203", stock=1)

        with pytest.raises(InsufficientStockError):
            SaleCommitService(db).commit(
                _request(customer, branch, [(available, 1), (scarce, 2)], settlement_key="cart:txn-202")
            )

        assert sale_count(db) == 0
        assert stock_of(db, available.id) == 5
        assert stock_of(db, scarce.id) == 1


def test_repeated_product_lines_are_checked_together(session_factory):
    with session_factory() as db:
        customer, branch = create_customer(db), create_branch(db)
        product = create_product(db, part_number="BRK-204", stock=3)

        with pytest.raises(InsufficientStockError):
            SaleCommitService(db).commit(
                _request(customer, branch, [(product, 2), (product, 2)], settlement_key="cart:txn-204")
            )

        assert stock_of(db, product.id) == 3


def test_failure_after_decrement_rolls_everything_back(session_factory, monkeypatch):
    with session_factory() as db:
        customer, branch = create_customer(db), create_branch(db)
        product = create_product(db, part_number="BRK-205", stock=4, retail_price="100.00")
        invoice = create_invoice(db, customer=customer, branch=branch, lines=[(product, 2, "100.00")])
        settleable = build_invoice_settlement(db, invoice_id=invoice.id, tax_rate_percent=Decimal("16"))

        def boom(self, source, amount):
            raise RuntimeError("disk full")

        monkeypatch.setattr(SettlementSourceRepository, "mark_paid", boom)

        with pytest.raises(RuntimeError):
            settleable.on_success(db, payment_method="CASH", settlement_key=settleable.id, payment_reference=None)

        db.expire_all()
        assert sale_count(db) == 0
        assert stock_of(db, product.id) == 4
        assert db.get(Invoice, invoice.id).status == "UNPAID"


def test_invoice_settlement_marks_invoice_paid(session_factory):
    with session_factory() as db:
        customer, branch = create_customer(db), create_branch(db)
        product = create_product(db, part_number="BRK-206", stock=4, retail_price="999.00")
        invoice = create_invoice(db, customer=customer, branch=branch, lines=[(product, 2, "100.00")])
        settleable = build_invoice_settlement(db, invoice_id=invoice.id, tax_rate_percent=Decimal("16"))

        sale = settleable.on_success(db, payment_method="CARD", settlement_key=settleable.id, payment_reference=None)

        db.expire_all()
        paid = db.get(Invoice, invoice.id)
        assert settleable.id == f"invoice:{invoice.id}"
        assert sale.invoice_id == invoice.id
        assert sale.total_amount == Decimal("232.00")
        assert paid.status == "PAID"
        assert paid.amount_paid == Decimal("232.00")
        assert stock_of(db, product.id) == 2


def test_paid_invoice_cannot_be_settled_again(session_factory):
    with session_factory() as db:
        customer, branch = create_customer(db), create_branch(db)
        product = create_product(db, part_number="BRK-207", stock=4)
        invoice = create_invoice(db, customer=customer, branch=branch, lines=[(product, 1, "100.00")])
        settleable = build_invoice_settlement(db, invoice_id=invoice.id, tax_rate_percent=Decimal("16"))
        settleable.on_success(db, payment_method="CASH", settlement_key="first", payment_reference=None)

        with pytest.raises(AppError) as exc_info:
            settleable.on_success(db, payment_method="CASH", settlement_key="second", payment_reference=None)

        assert exc_info.value.error.code == "SETTLEMENT_SOURCE_NOT_PAYABLE"
        assert sale_count(db) == 1
        assert stock_of(db, product.id) == 3


def test_unknown_payment_method_is_rejected(session_factory):
    with session_factory() as db:
        customer, branch = create_customer(db), create_branch(db)
        product = create_product(db, part_number="BRK-208", stock=4)

        with pytest.raises(AppError) as exc_info:
            SaleCommitService(db).commit(
                _request(customer, branch, [(product, 1)], settlement_key="k", payment_method="CHEQUE")
            )

        assert exc_info.value.error.code == "UNSUPPORTED_PAYMENT_METHOD"
        assert stock_of(db, product.id) == 4
