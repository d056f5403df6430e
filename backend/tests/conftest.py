"""Pytest fixtures: sqlite DB, client, AI result factories."""
import os
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("API_KEY", "")

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from mailledger.config import settings
from mailledger.main import app
from mailledger.database import get_db, get_sync_db
from mailledger.models import Base, Message
from mailledger.schemas import (
    CategorizationResult,
    ClassificationResult,
    ClassifiedTransaction,
    TimeExtractionResult,
)


@pytest.fixture(autouse=True)
def fast_backoff(monkeypatch):
    """No real sleeping between AI retries in tests."""
    monkeypatch.setattr(settings, "openai_backoff_base_s", 0.0)


@pytest.fixture
def db_urls(tmp_path):
    """
    Use a file-based sqlite DB so sync setup code (tests) and async app sessions
    can see the same data.
    """
    db_path = tmp_path / "test.db"
    sync_url = f"sqlite:///{db_path}"
    async_url = f"sqlite+aiosqlite:///{db_path}"
    return sync_url, async_url


@pytest.fixture
def db_engine(db_urls):
    sync_url, _ = db_urls
    engine = create_engine(sync_url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_urls, session_factory):
    _, async_url = db_urls
    async_engine = create_async_engine(
        async_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    AsyncSessionLocal = async_sessionmaker(async_engine, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        async with AsyncSessionLocal() as session:
            yield session

    def override_get_sync_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_db] = override_get_sync_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


def _analysis(
    should_track: bool = True,
    tx_type: str = "outgoing",
    amount: float = 50000.0,
    when: str = "2026-01-03T18:26:40-05:00",
    category: str = "financial",
    subcategory: str = "investments",
) -> dict:
    transaction = (
        ClassifiedTransaction(type=tx_type, amount=amount, description="Transferencia", date=when[:10], method="other")
        if should_track
        else None
    )
    return {
        "classification": ClassificationResult(
            should_track=should_track,
            transaction=transaction,
            exclusion_reason=None if should_track else "Bolsillo movement",
        ),
        "categorization": CategorizationResult(
            category=category, subcategory=subcategory, confidence="high", notes=None
        ),
        "time_extraction": TimeExtractionResult(
            transaction_datetime=when,
            transaction_date=when[:10],
            transaction_time=when[11:19],
            extraction_successful=True,
            notes=None,
        ),
    }


@pytest.fixture
def make_analysis():
    """Factory for the dict process_transaction returns."""
    return _analysis


@pytest.fixture
def add_message(db_session):
    """Insert a captured message directly."""

    def _add(message_id: str, subject: str = "Notificacion Davivienda", body: str = "Transferencia", **fields):
        row = Message(
            id=message_id,
            subject=subject,
            sender="notificaciones@davivienda.com",
            date="Sat, 03 Jan 2026 23:26:40 +0000",
            body=body,
            received_at=fields.pop("received_at", datetime(2026, 1, 3, 23, 26, 40)),
            processed=fields.pop("processed", False),
            processing=fields.pop("processing", False),
            **fields,
        )
        db_session.add(row)
        db_session.commit()
        return row

    return _add
