import threading
import uuid

import pytest

from app.retailcore.core.error_catalog import AppError
from app.retailcore.services.stock_ledger import InsufficientStockError, StockLedger
from tests.settlement_helpers import create_product, stock_of


def test_decrement_returns_remaining_stock(session_factory):
    with session_factory() as db:
        product = create_product(db, part_number="BRK-100", stock=5)

        remaining = StockLedger(db).decrement(product.id, 3)
        db.commit()

        assert remaining == 2
        assert stock_of(db, product.id) == 2


def test_decrement_beyond_available_is_rejected(session_factory):
    with session_factory() as db:
        product = create_product(db, part_number="BRK-101", stock=2)

        with pytest.raises(InsufficientStockError) as exc_info:
            StockLedger(db).decrement(product.id, 3)
        db.rollback()

        assert exc_info.value.available == 2
        assert exc_info.value.requested == 3
        assert exc_info.value.error.code == "INSUFFICIENT_STOCK"
        assert stock_of(db, product.id) == 2


def test_decrement_requires_positive_quantity(session_factory):
    with session_factory() as db:
        product = create_product(db, part_number="BRK-102", stock=2)

        with pytest.raises(AppError) as exc_info:
            StockLedger(db).decrement(product.id, 0)

        assert exc_info.value.error.code == "VALIDATION_ERROR"


def test_unknown_product(session_factory):
    with session_factory() as db:
        with pytest.raises(AppError) as exc_info:
            StockLedger(db).check_available(uuid.uuid4())

        assert exc_info.value.error.code == "PRODUCT_NOT_FOUND"


def test_ensure_available_does_not_mutate(session_factory):
    with session_factory() as db:
        product = create_product(db, part_number="BRK-103", stock=4)
        ledger = StockLedger(db)

        assert ledger.ensure_available(product.id, 4) == 4
        with pytest.raises(InsufficientStockError):
            ledger.ensure_available(product.id, 5)
        assert stock_of(db, product.id) == 4


def test_release_restores_stock(session_factory):
    with session_factory() as db:
        product = create_product(db, part_number="BRK-104", stock=1)
        ledger = StockLedger(db)

        ledger.decrement(product.id, 1)
        assert ledger.release(product.id, 1) == 1
        db.commit()

        assert stock_of(db, product.id) == 1


def test_concurrent_decrements_for_last_unit(session_factory):
    with session_factory() as db:
        product = create_product(db, part_number="BRK-105", stock=1)

    barrier = threading.Barrier(2)
    results = []
    lock = threading.Lock()

    def worker():
        with session_factory() as db:
            barrier.wait()
            try:
                StockLedger(db).decrement(product.id, 1)
                db.commit()
                outcome = "ok"
            except InsufficientStockError:
                db.rollback()
                outcome = "insufficient"
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(results) == ["insufficient", "ok"]
    with session_factory() as db:
        assert stock_of(db, product.id) == 0
