from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from app.retailcore.db.models import Branch, Customer, Product


class CatalogRepository:
    def __init__(self, db):
        self.db = db

    def get_product(self, product_id: UUID | str) -> Product | None:
        return self.db.execute(select(Product).where(Product.id == product_id)).scalars().first()

    def get_products(self, product_ids: list[UUID]) -> dict[str, Product]:
        if not product_ids:
            return {}
        rows = self.db.execute(select(Product).where(Product.id.in_(product_ids))).scalars().all()
        return {str(row.id): row for row in rows}

    def get_customer(self, customer_id: UUID | str) -> Customer | None:
        return self.db.execute(select(Customer).where(Customer.id == customer_id)).scalars().first()

    def get_branch(self, branch_id: UUID | str) -> Branch | None:
        return self.db.execute(select(Branch).where(Branch.id == branch_id)).scalars().first()
