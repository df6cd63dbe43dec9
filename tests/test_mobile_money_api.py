from decimal import Decimal

from app.retailcore.services.payment_gateway import GatewayInitiationError
from tests.fakes import completed
from tests.settlement_helpers import (
    create_branch,
    create_customer,
    create_product,
    daraja_callback,
    reconciliation_items,
    sale_count,
    sale_payload,
    stock_of,
    wait_for_payment,
)


def _start(
    client, db_session, *, part_number: str, transaction_id: str, stock: int = 5, phone="0712 345 678", price="500.00"
):
    customer, branch = create_customer(db_session), create_branch(db_session)
    product = create_product(db_session, part_number=part_number, stock=stock, retail_price=price)
    payload = sale_payload(customer, branch, [(product, 2)], transaction_id=transaction_id)
    payload.pop("payment_method")
    payload["payer_phone"] = phone
    response = client.post(
        "/payments/mobile-money", headers={"Idempotency-Key": f"mm-{transaction_id}"}, json=payload
    )
    return response, product, payload


def test_mobile_money_checkout_settles_on_confirmation(client, db_session, gateway):
    response, product, _payload = _start(client, db_session, part_number="MM-1", transaction_id="txn-mm-1")

    assert response.status_code == 202
    body = response.json()
    assert body["state"] == "AWAITING_CONFIRMATION"
    assert body["active"] is True
    assert body["settleable_key"] == "cart:txn-mm-1"
    assert Decimal(body["amount"]) == Decimal("1160.00")
    reference = body["external_reference"]
    assert gateway.initiated == [(reference, Decimal("1160.00"), "254712345678")]
    assert stock_of(db_session, product.id) == 5

    gateway.default = completed("QK21")
    payment = wait_for_payment(client, reference, states={"SUCCEEDED"})

    assert payment["outcome"] == "completed"
    assert payment["receipt_number"] == "QK21"
    sale = client.get(f"/pos/sales/{payment['sale_id']}").json()
    assert sale["payment_method"] == "MOBILE_MONEY"
    assert sale["payment_reference"] == "QK21"
    assert stock_of(db_session, product.id) == 3


def test_provider_callback_settles_and_duplicates_are_ignored(client, db_session, gateway):
    response, product, _payload = _start(client, db_session, part_number="MM-2", transaction_id="txn-mm-2")
    reference = response.json()["external_reference"]

    ack = client.post("/payments/callback", json=daraja_callback(reference, receipt="QK22"))
    payment = wait_for_payment(client, reference, states={"SUCCEEDED"})
    duplicate = client.post("/payments/callback", json=daraja_callback(reference, receipt="QK22"))

    assert ack.status_code == 200
    assert ack.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}
    assert duplicate.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}
    assert payment["receipt_number"] == "QK22"
    assert sale_count(db_session) == 1
    assert stock_of(db_session, product.id) == 3
    assert reconciliation_items(db_session) == []


def test_timeout_then_late_confirmation_goes_to_reconciliation(client, db_session, gateway):
    response, product, _payload = _start(client, db_session, part_number="MM-3", transaction_id="txn-mm-3")
    reference = response.json()["external_reference"]

    payment = wait_for_payment(client, reference, states={"TIMED_OUT"})
    assert payment["outcome"] == "timed_out"
    assert sale_count(db_session) == 0
    assert stock_of(db_session, product.id) == 5

    ack = client.post("/payments/callback", json=daraja_callback(reference, receipt="QK23"))

    assert ack.json()["ResultCode"] == 0
    queue = client.get("/reconciliation", params={"status": "OPEN"}).json()["rows"]
    assert [(row["external_reference"], row["reason"], row["receipt_number"]) for row in queue] == [
        (reference, "LATE_CONFIRMATION", "QK23")
    ]
    assert sale_count(db_session) == 0
    assert stock_of(db_session, product.id) == 5


def test_cancel_ends_attempt(client, db_session, gateway):
    response, product, _payload = _start(client, db_session, part_number="MM-4", transaction_id="txn-mm-4")
    reference = response.json()["external_reference"]

    cancelled = client.post(f"/payments/{reference}/cancel")
    again = client.post(f"/payments/{reference}/cancel")
    missing = client.post("/payments/ws_CO_missing/cancel")

    assert cancelled.status_code == 200
    assert cancelled.json()["state"] == "FAILED"
    assert cancelled.json()["outcome"] == "payment_failed"
    assert cancelled.json()["failure_reason"] == "Cancelled by operator"
    assert again.status_code == 409
    assert again.json()["code"] == "INTENT_NOT_ACTIVE"
    assert missing.status_code == 404
    assert missing.json()["code"] == "PAYMENT_NOT_FOUND"
    assert stock_of(db_session, product.id) == 5


def test_second_attempt_while_awaiting_is_rejected(client, db_session, gateway):
    response, _product, payload = _start(client, db_session, part_number="MM-5", transaction_id="txn-mm-5")
    assert response.status_code == 202

    second = client.post("/payments/mobile-money", headers={"Idempotency-Key": "mm-txn-mm-5-b"}, json=payload)
    offline = client.post(
        "/pos/sales",
        headers={"Idempotency-Key": "cash-txn-mm-5"},
        json={**payload, "payment_method": "CASH"},
    )

    assert second.status_code == 409
    assert second.json()["code"] == "INTENT_ALREADY_ACTIVE"
    assert offline.status_code == 409
    assert offline.json()["code"] == "INTENT_ALREADY_ACTIVE"
    assert len(gateway.initiated) == 1


def test_invalid_phone_is_rejected_before_provider(client, db_session, gateway):
    response, _product, _payload = _start(
        client, db_session, part_number="MM-6", transaction_id="txn-mm-6", phone="12-34"
    )

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_PHONE"
    assert gateway.initiated == []
    assert client.get("/payments").json()["total"] == 0


def test_initiation_failure(client, db_session, gateway):
    gateway.initiate_error = GatewayInitiationError("M-Pesa error: Bad Request - Invalid PhoneNumber")

    response, _product, _payload = _start(client, db_session, part_number="MM-7", transaction_id="txn-mm-7")

    assert response.status_code == 502
    assert response.json()["code"] == "PAYMENT_INITIATION_FAILED"
    assert client.get("/payments").json()["total"] == 0


def test_payment_listing_and_lookup(client, db_session, gateway):
    response, _product, _payload = _start(client, db_session, part_number="MM-8", transaction_id="txn-mm-8")
    reference = response.json()["external_reference"]

    listed = client.get("/payments", params={"status": "AWAITING_CONFIRMATION"})
    missing = client.get("/payments/ws_CO_missing")

    assert listed.status_code == 200
    assert [row["external_reference"] for row in listed.json()["rows"]] == [reference]
    assert listed.json()["rows"][0]["payer_phone"] == "254712345678"
    assert missing.status_code == 404
    assert missing.json()["code"] == "PAYMENT_NOT_FOUND"


def test_malformed_callback_is_acknowledged(client):
    response = client.post("/payments/callback", json={"unexpected": True})

    assert response.status_code == 200
    assert response.json()["ResultCode"] == 0


def test_cart_paid_in_cash_cannot_be_paid_by_mobile_money(client, db_session, gateway):
    customer, branch = create_customer(db_session), create_branch(db_session)
    product = create_product(db_session, part_number="MM-9", stock=5)
    payload = sale_payload(customer, branch, [(product, 1)], transaction_id="txn-mm-9")
    cash = client.post("/pos/sales", headers={"Idempotency-Key": "cash-txn-mm-9"}, json=payload)

    mobile_payload = {key: value for key, value in payload.items() if key != "payment_method"}
    mobile_payload["payer_phone"] = "0712345678"
    mobile = client.post("/payments/mobile-money", headers={"Idempotency-Key": "mm-txn-mm-9"}, json=mobile_payload)

    assert cash.status_code == 201
    assert mobile.status_code == 409
    assert mobile.json()["code"] == "SETTLEMENT_SOURCE_NOT_PAYABLE"
    assert mobile.json()["details"]["sale_id"] == cash.json()["id"]
    assert gateway.initiated == []
    assert sale_count(db_session) == 1
    assert stock_of(db_session, product.id) == 4


def test_fractional_total_is_rejected_before_provider(client, db_session, gateway):
    response, _product, _payload = _start(
        client, db_session, part_number="MM-10", transaction_id="txn-mm-10", price="100.35"
    )

    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_AMOUNT"
    assert response.json()["details"]["amount"] == "232.81"
    assert gateway.initiated == []
