from __future__ import annotations

from sqlalchemy import select

from app.retailcore.db.models import ReconciliationItem


class ReconciliationRepository:
    def __init__(self, db):
        self.db = db

    def get_by_id(self, item_id) -> ReconciliationItem | None:
        return self.db.execute(select(ReconciliationItem).where(ReconciliationItem.id == item_id)).scalars().first()

    def get_by_reference(self, external_reference: str, reason: str) -> ReconciliationItem | None:
        return (
            self.db.execute(
                select(ReconciliationItem).where(
                    ReconciliationItem.external_reference == external_reference,
                    ReconciliationItem.reason == reason,
                )
            )
            .scalars()
            .first()
        )

    def list_items(self, *, status: str | None) -> list[ReconciliationItem]:
        query = select(ReconciliationItem)
        if status:
            query = query.where(ReconciliationItem.status == status)
        return self.db.execute(query.order_by(ReconciliationItem.created_at.desc())).scalars().all()

    def create(self, item: ReconciliationItem) -> ReconciliationItem:
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)
        return item

    def update(self, item: ReconciliationItem) -> ReconciliationItem:
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)
        return item
