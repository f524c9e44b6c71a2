import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.config import settings
from app.db import Base
from tests.factories import create_plan, create_subscriber, create_subscription


def _enable_foreign_keys(engine) -> None:
    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_foreign_keys(engine)
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def session_factory(tmp_path):
    """File-backed database for code that opens its own sessions from worker threads."""
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'billing.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    _enable_foreign_keys(engine)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    try:
        yield factory
    finally:
        engine.dispose()


@pytest.fixture(autouse=True)
def billing_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "invoice_artifact_dir", str(tmp_path / "artifacts"))
    monkeypatch.setattr(settings, "billing_workers", 4)
    monkeypatch.setattr(settings, "billing_queue_size", 8)
    monkeypatch.setattr(settings, "max_email_retries", 5)
    monkeypatch.setattr(settings, "deactivate_on_retry_exhaustion", True)
    monkeypatch.setattr(settings, "dispatch_stale_minutes", 60)
    monkeypatch.setattr(settings, "payment_term_days", 7)
    monkeypatch.setattr(settings, "company_name", "Movido")
    return settings


@pytest.fixture()
def plan(db_session):
    return create_plan(db_session)


@pytest.fixture()
def subscriber(db_session):
    return create_subscriber(db_session)


@pytest.fixture()
def subscription(db_session, subscriber, plan):
    return create_subscription(db_session, subscriber, plan)
