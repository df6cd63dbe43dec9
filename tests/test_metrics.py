from tests.settlement_helpers import create_branch, create_customer, create_product, sale_payload


def test_metrics_endpoint(client):
    client.get("/health")

    response = client.get("/ops/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_settlements_are_counted(client, db_session):
    customer, branch = create_customer(db_session), create_branch(db_session)
    product = create_product(db_session, part_number="MET-1", stock=5)
    response = client.post(
        "/pos/sales",
        headers={"Idempotency-Key": "metrics-sale-1"},
        json=sale_payload(customer, branch, [(product, 1)], transaction_id="txn-metrics-1"),
    )
    assert response.status_code == 201

    metrics_text = client.get("/ops/metrics").text

    assert 'settlements_total{kind="pos_sale",method="CASH"}' in metrics_text
