import importlib
import os
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tests.fakes import FakeGateway


def _setup_app(database_url: str, gateway: FakeGateway):
    os.environ["DATABASE_URL"] = database_url
    os.environ["PAYMENT_POLL_INTERVAL_SEC"] = "0.02"
    os.environ["PAYMENT_TIMEOUT_SEC"] = "1.0"
    os.environ["MPESA_CONSUMER_KEY"] = ""

    import app.retailcore.core.config as config
    import app.retailcore.db.session as session
    import app.main as main

    importlib.reload(config)
    importlib.reload(session)
    importlib.reload(main)

    return main.create_app(gateway=gateway), session


def _run_migrations(database_url: str):
    os.environ["DATABASE_URL"] = database_url
    config = Config("alembic.ini")
    config.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(config, "head")


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def client(tmp_path: Path, gateway):
    database_url = f"sqlite+pysqlite:///{tmp_path / 'test.db'}"

    _run_migrations(database_url)
    app, session = _setup_app(database_url, gateway)

    with TestClient(app) as client:
        yield client

    session.engine.dispose()


@pytest.fixture()
def db_session(client):
    from app.retailcore.db.session import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def session_factory(tmp_path: Path):
    """Migrated database for service-level tests that run without the HTTP app."""
    database_url = f"sqlite+pysqlite:///{tmp_path / 'service.db'}"
    _run_migrations(database_url)
    engine = create_engine(
        database_url,
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    factory = sessionmaker(bind=engine, autoflush=False, future=True, expire_on_commit=False)
    yield factory
    engine.dispose()
