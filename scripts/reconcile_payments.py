from __future__ import annotations

import argparse
import asyncio
import json
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.retailcore.core.config import settings
from app.retailcore.services.mpesa import MpesaGateway
from app.retailcore.services.payment_gateway import PaymentGateway
from app.retailcore.services.reconciliation import ReconciliationService, SweepReport


def _fmt_report(report: SweepReport) -> str:
    lines = ["Payment Reconciliation Sweep", "=" * 72]
    for label, references in report.as_dict().items():
        lines.append(f"{label.upper():14} {len(references):4}  {', '.join(references)}")
    lines.append("=" * 72)
    return "\n".join(lines)


async def _sweep(
    database_url: str,
    gateway: PaymentGateway | None,
    *,
    timeout_sec: float,
    lookback_hours: int,
) -> SweepReport:
    owned_gateway = gateway is None
    if owned_gateway:
        gateway = MpesaGateway.from_settings(settings)
    engine = create_engine(database_url, future=True)
    session_factory = sessionmaker(bind=engine, autoflush=False, future=True, expire_on_commit=False)
    try:
        with session_factory() as db:
            # no live intents exist outside the API process
            return await ReconciliationService(db).sweep(
                gateway,
                active_references=set(),
                timeout_sec=timeout_sec,
                lookback_hours=lookback_hours,
            )
    finally:
        engine.dispose()
        if owned_gateway:
            await gateway.aclose()


def run_sweep(
    database_url: str,
    *,
    gateway: PaymentGateway | None = None,
    timeout_sec: float | None = None,
    lookback_hours: int | None = None,
    as_json: bool = False,
) -> int:
    report = asyncio.run(
        _sweep(
            database_url,
            gateway,
            timeout_sec=settings.PAYMENT_TIMEOUT_SEC if timeout_sec is None else timeout_sec,
            lookback_hours=settings.RECONCILIATION_LOOKBACK_HOURS if lookback_hours is None else lookback_hours,
        )
    )
    if as_json:
        print(json.dumps(report.as_dict(), indent=2))
    else:
        print(_fmt_report(report))
    return 1 if report.enqueued else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Expire orphaned mobile-money attempts and queue late confirmations")
    parser.add_argument(
        "--database-url",
        default=os.getenv("DATABASE_URL", settings.DATABASE_URL),
        help="database url",
    )
    parser.add_argument("--timeout-sec", type=float, default=None, help="age after which awaiting rows expire")
    parser.add_argument("--lookback-hours", type=int, default=None, help="window of failed rows to re-query")
    parser.add_argument("--json", action="store_true", help="output machine-readable JSON")
    args = parser.parse_args()
    return run_sweep(
        args.database_url,
        timeout_sec=args.timeout_sec,
        lookback_hours=args.lookback_hours,
        as_json=args.json,
    )


if __name__ == "__main__":
    raise SystemExit(main())
