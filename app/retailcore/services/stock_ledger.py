from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update

from app.retailcore.core.error_catalog import AppError, ErrorCatalog
from app.retailcore.db.models import Product

logger = logging.getLogger(__name__)


class InsufficientStockError(AppError):
    def __init__(self, *, product_id: UUID | str, available: int, requested: int, name: str | None = None):
        self.product_id = str(product_id)
        self.available = available
        self.requested = requested
        super().__init__(
            ErrorCatalog.INSUFFICIENT_STOCK,
            details={
                "product_id": self.product_id,
                "product_name": name,
                "available": available,
                "requested": requested,
            },
        )


class StockLedger:
    """Authoritative per-product available quantity.

    Mutations run inside the caller's transaction and never commit. Decrement is a
    single conditional UPDATE, so two concurrent decrements for the last units of a
    product cannot both succeed.
    """

    def __init__(self, db):
        self.db = db

    def _product(self, product_id: UUID | str) -> Product:
        product = self.db.execute(select(Product).where(Product.id == product_id)).scalars().first()
        if product is None:
            raise AppError(ErrorCatalog.PRODUCT_NOT_FOUND, details={"product_id": str(product_id)})
        return product

    def check_available(self, product_id: UUID | str) -> int:
        stock = self.db.execute(select(Product.stock).where(Product.id == product_id)).scalar_one_or_none()
        if stock is None:
            raise AppError(ErrorCatalog.PRODUCT_NOT_FOUND, details={"product_id": str(product_id)})
        return int(stock)

    def ensure_available(self, product_id: UUID | str, quantity: int) -> int:
        available = self.check_available(product_id)
        if available < quantity:
            product = self._product(product_id)
            raise InsufficientStockError(
                product_id=product_id,
                available=available,
                requested=quantity,
                name=product.name,
            )
        return available

    def decrement(self, product_id: UUID | str, quantity: int) -> int:
        if quantity < 1:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "quantity must be at least 1"})
        result = self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            product = self._product(product_id)
            logger.info(
                "stock decrement rejected product=%s available=%s requested=%s",
                product_id,
                product.stock,
                quantity,
            )
            raise InsufficientStockError(
                product_id=product_id,
                available=int(product.stock),
                requested=quantity,
                name=product.name,
            )
        return self.check_available(product_id)

    def release(self, product_id: UUID | str, quantity: int) -> int:
        if quantity < 1:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "quantity must be at least 1"})
        result = self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AppError(ErrorCatalog.PRODUCT_NOT_FOUND, details={"product_id": str(product_id)})
        return self.check_available(product_id)
