from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select

from app.retailcore.db.models import PaymentTransaction


class PaymentTransactionRepository:
    def __init__(self, db):
        self.db = db

    def get_by_reference(self, external_reference: str) -> PaymentTransaction | None:
        return (
            self.db.execute(
                select(PaymentTransaction).where(PaymentTransaction.external_reference == external_reference)
            )
            .scalars()
            .first()
        )

    def find_awaiting(self, settleable_key: str) -> list[PaymentTransaction]:
        return (
            self.db.execute(
                select(PaymentTransaction).where(
                    PaymentTransaction.settleable_key == settleable_key,
                    PaymentTransaction.status == "AWAITING_CONFIRMATION",
                )
            )
            .scalars()
            .all()
        )

    def list_transactions(
        self, *, status: str | None, page: int, page_size: int
    ) -> tuple[list[PaymentTransaction], int]:
        query = select(PaymentTransaction)
        if status:
            query = query.where(PaymentTransaction.status == status)
        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        rows = (
            self.db.execute(
                query.order_by(PaymentTransaction.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            .scalars()
            .all()
        )
        return rows, int(total)

    def list_by_status_since(self, statuses: list[str], since: datetime) -> list[PaymentTransaction]:
        return (
            self.db.execute(
                select(PaymentTransaction)
                .where(PaymentTransaction.status.in_(statuses), PaymentTransaction.created_at >= since)
                .order_by(PaymentTransaction.created_at)
            )
            .scalars()
            .all()
        )

    def create(self, record: PaymentTransaction) -> PaymentTransaction:
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def update(self, record: PaymentTransaction) -> PaymentTransaction:
        record.updated_at = datetime.utcnow()
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record
