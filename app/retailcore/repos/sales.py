from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from app.retailcore.db.models import Sale, SaleItem


@dataclass(frozen=True)
class SaleQueryFilters:
    branch_id: UUID | None = None
    customer_id: UUID | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None


class SaleRepository:
    def __init__(self, db):
        self.db = db

    def _apply_filters(self, filters: SaleQueryFilters):
        query = select(Sale)
        if filters.branch_id:
            query = query.where(Sale.branch_id == filters.branch_id)
        if filters.customer_id:
            query = query.where(Sale.customer_id == filters.customer_id)
        if filters.from_date:
            query = query.where(Sale.created_at >= filters.from_date)
        if filters.to_date:
            query = query.where(Sale.created_at <= filters.to_date)
        return query

    def list_sales(self, filters: SaleQueryFilters, *, page: int, page_size: int) -> tuple[list[Sale], int]:
        query = self._apply_filters(filters)
        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        rows = (
            self.db.execute(
                query.order_by(Sale.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
            )
            .scalars()
            .all()
        )
        return rows, int(total)

    def get_by_id(self, sale_id: UUID | str) -> Sale | None:
        return self.db.execute(select(Sale).where(Sale.id == sale_id)).scalars().first()

    def get_by_settlement_key(self, settlement_key: str) -> Sale | None:
        return self.db.execute(select(Sale).where(Sale.settlement_key == settlement_key)).scalars().first()

    def get_items(self, sale_id: UUID | str) -> list[SaleItem]:
        return (
            self.db.execute(select(SaleItem).where(SaleItem.sale_id == sale_id).order_by(SaleItem.position))
            .scalars()
            .all()
        )
