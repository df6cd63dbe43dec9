from datetime import datetime, timedelta

from tests.fakes import completed
from tests.settlement_helpers import create_payment_transaction


def _late_item(client, db_session, gateway, reference: str) -> dict:
    create_payment_transaction(
        db_session,
        reference=reference,
        status="TIMED_OUT",
        created_at=datetime.utcnow() - timedelta(minutes=15),
    )
    gateway.by_reference[reference] = completed("QK41")
    report = client.post("/reconciliation/sweep").json()
    assert report["enqueued"] == [reference]
    return client.get("/reconciliation", params={"status": "OPEN"}).json()["rows"][0]


def test_sweep_enqueues_and_operator_resolves(client, db_session, gateway):
    item = _late_item(client, db_session, gateway, "ws_CO_api_1")

    assert item["reason"] == "LATE_CONFIRMATION"
    assert item["receipt_number"] == "QK41"
    assert item["settleable_key"] == "cart:txn-orphan"

    resolved = client.post(
        f"/reconciliation/{item['id']}/resolve",
        json={"resolution": "FULFILLED_MANUALLY", "note": "Goods handed over, sale keyed in by supervisor"},
    )
    again = client.post(f"/reconciliation/{item['id']}/resolve", json={"resolution": "DISMISSED"})

    assert resolved.status_code == 200
    assert resolved.json()["status"] == "RESOLVED"
    assert resolved.json()["resolution"] == "FULFILLED_MANUALLY"
    assert again.status_code == 409
    assert again.json()["code"] == "RECONCILIATION_ITEM_RESOLVED"
    assert client.get("/reconciliation", params={"status": "OPEN"}).json()["rows"] == []
    assert len(client.get("/reconciliation").json()["rows"]) == 1


def test_resolve_validation(client, db_session, gateway):
    item = _late_item(client, db_session, gateway, "ws_CO_api_2")

    bad = client.post(f"/reconciliation/{item['id']}/resolve", json={"resolution": "IGNORED"})
    missing = client.post(
        "/reconciliation/6f1c1c43-7b55-4c8e-9a55-2f0b8f7d9a10/resolve", json={"resolution": "DISMISSED"}
    )

    assert bad.status_code == 422
    assert bad.json()["code"] == "VALIDATION_ERROR"
    assert missing.status_code == 404
    assert missing.json()["code"] == "RECONCILIATION_ITEM_NOT_FOUND"


def test_sweep_with_nothing_to_do(client):
    response = client.post("/reconciliation/sweep")

    assert response.status_code == 200
    assert response.json() == {"expired": [], "requeried": [], "enqueued": [], "query_errors": []}
