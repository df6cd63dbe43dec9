import json
from datetime import datetime, timedelta

import httpx

from app.retailcore.services.mpesa import MpesaGateway
from scripts import reconcile_payments
from scripts.reconcile_payments import run_sweep
from tests.fakes import FakeGateway, completed
from tests.settlement_helpers import create_payment_transaction


def _database_url(session_factory) -> str:
    return session_factory.kw["bind"].url.render_as_string(hide_password=False)


def test_cli_sweep_reports_late_confirmations(session_factory, capsys):
    with session_factory() as db:
        create_payment_transaction(
            db,
            reference="ws_CO_cli_1",
            status="TIMED_OUT",
            created_at=datetime.utcnow() - timedelta(minutes=20),
        )
        create_payment_transaction(
            db,
            reference="ws_CO_cli_2",
            status="AWAITING_CONFIRMATION",
            created_at=datetime.utcnow() - timedelta(hours=2),
        )
    gateway = FakeGateway()
    gateway.by_reference["ws_CO_cli_1"] = completed("QK51")

    exit_code = run_sweep(_database_url(session_factory), gateway=gateway, timeout_sec=120, as_json=True)

    report = json.loads(capsys.readouterr().out)
    assert exit_code == 1
    assert report["expired"] == ["ws_CO_cli_2"]
    assert report["enqueued"] == ["ws_CO_cli_1"]


def test_cli_sweep_clean_run(session_factory, capsys):
    exit_code = run_sweep(_database_url(session_factory), gateway=FakeGateway(), timeout_sec=120, lookback_hours=1)

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "Payment Reconciliation Sweep" in output
    assert "ENQUEUED" in output


def test_cli_closes_the_gateway_it_builds(session_factory, monkeypatch, capsys):
    client = httpx.AsyncClient(
        base_url="https://sandbox.safaricom.co.ke",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    gateway = MpesaGateway(
        consumer_key="key",
        consumer_secret="secret",
        shortcode="174379",
        passkey="passkey",
        callback_url="https://example.com/payments/callback",
        client=client,
    )
    monkeypatch.setattr(reconcile_payments.MpesaGateway, "from_settings", classmethod(lambda cls, settings: gateway))

    exit_code = run_sweep(_database_url(session_factory), timeout_sec=120, lookback_hours=1)

    capsys.readouterr()
    assert exit_code == 0
    assert client.is_closed
