from decimal import Decimal

from app.retailcore.db.models import StockRequest
from tests.fakes import completed
from tests.settlement_helpers import (
    create_branch,
    create_customer,
    create_product,
    create_stock_request,
    stock_of,
    wait_for_payment,
)


def _stock_request(db_session, *, part_number: str, status: str = "APPROVED", stock: int = 50):
    customer, branch = create_customer(db_session, name="Mombasa Spares Ltd"), create_branch(db_session)
    product = create_product(db_session, part_number=part_number, stock=stock, wholesale_price="400.00")
    stock_request = create_stock_request(
        db_session, customer=customer, branch=branch, lines=[(product, 10)], status=status
    )
    return stock_request, product


def _status(db_session, stock_request_id) -> str:
    db_session.expire_all()
    return db_session.get(StockRequest, stock_request_id).status


def test_offline_payment_marks_request_paid(client, db_session):
    stock_request, product = _stock_request(db_session, part_number="B2B-1")

    response = client.post(f"/stock-requests/{stock_request.id}/payments", json={"payment_method": "BANK_TRANSFER"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "PAID"
    assert body["sale"]["stock_request_id"] == str(stock_request.id)
    assert body["sale"]["settlement_key"] == f"stock_request:{stock_request.id}"
    assert Decimal(body["sale"]["subtotal_amount"]) == Decimal("4000.00")
    assert Decimal(body["sale"]["total_amount"]) == Decimal("4640.00")
    assert stock_of(db_session, product.id) == 40
    assert _status(db_session, stock_request.id) == "PAID"


def test_paid_request_cannot_be_paid_again(client, db_session):
    stock_request, product = _stock_request(db_session, part_number="B2B-2")
    first = client.post(f"/stock-requests/{stock_request.id}/payments", json={"payment_method": "CASH"})

    second = client.post(f"/stock-requests/{stock_request.id}/payments", json={"payment_method": "CASH"})

    assert first.status_code == 200
    assert second.status_code == 409
    assert second.json()["code"] == "SETTLEMENT_SOURCE_NOT_PAYABLE"
    assert stock_of(db_session, product.id) == 40


def test_only_approved_requests_are_payable(client, db_session):
    stock_request, product = _stock_request(db_session, part_number="B2B-3", status="PENDING")

    response = client.post(f"/stock-requests/{stock_request.id}/payments", json={"payment_method": "CASH"})
    missing = client.post(
        "/stock-requests/6f1c1c43-7b55-4c8e-9a55-2f0b8f7d9a10/payments", json={"payment_method": "CASH"}
    )

    assert response.status_code == 409
    assert response.json()["details"]["status"] == "PENDING"
    assert missing.status_code == 404
    assert missing.json()["code"] == "STOCK_REQUEST_NOT_FOUND"
    assert stock_of(db_session, product.id) == 50


def test_insufficient_stock_blocks_offline_payment(client, db_session):
    stock_request, product = _stock_request(db_session, part_number="B2B-4", stock=3)

    response = client.post(f"/stock-requests/{stock_request.id}/payments", json={"payment_method": "CASH"})

    assert response.status_code == 409
    assert response.json()["code"] == "INSUFFICIENT_STOCK"
    assert stock_of(db_session, product.id) == 3
    assert _status(db_session, stock_request.id) == "APPROVED"


def test_mobile_money_payment(client, db_session, gateway):
    stock_request, product = _stock_request(db_session, part_number="B2B-5")

    response = client.post(
        f"/stock-requests/{stock_request.id}/payments",
        json={"payment_method": "MOBILE_MONEY", "payer_phone": "0722000111"},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "AWAITING_PAYMENT"
    assert body["payment"]["settleable_kind"] == "stock_request"
    assert Decimal(body["payment"]["amount"]) == Decimal("4640.00")
    assert _status(db_session, stock_request.id) == "APPROVED"

    gateway.default = completed("QK31")
    payment = wait_for_payment(client, body["payment"]["external_reference"], states={"SUCCEEDED"})

    assert payment["outcome"] == "completed"
    assert _status(db_session, stock_request.id) == "PAID"
    assert stock_of(db_session, product.id) == 40


def test_mobile_money_requires_phone(client, db_session, gateway):
    stock_request, _product = _stock_request(db_session, part_number="B2B-6")

    response = client.post(f"/stock-requests/{stock_request.id}/payments", json={"payment_method": "MOBILE_MONEY"})

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_PHONE"
    assert gateway.initiated == []
