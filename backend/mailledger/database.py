"""Database engines and sessions.

- FastAPI request handlers use AsyncSession for reads.
- Background work (Celery, BackgroundTasks, Alembic, scripts) uses sync Session.
"""

from __future__ import annotations

from typing import AsyncGenerator, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from .config import settings


def _is_sqlite(url: URL) -> bool:
    return url.drivername.startswith("sqlite")


def _is_memory_sqlite(url: URL) -> bool:
    return _is_sqlite(url) and (url.database in (None, "", ":memory:"))


def _with_driver(url: URL, drivername: str) -> URL:
    """Return a copy of URL with a different drivername."""
    return url.set(drivername=drivername)


raw_url: URL = make_url(settings.database_url)

# ----------------------------
# Sync engine/session (workers)
# ----------------------------

if _is_sqlite(raw_url):
    timeout_s = max(0.0, float(settings.sqlite_busy_timeout_ms) / 1000.0)
    sync_connect_args: dict = {"check_same_thread": False, "timeout": timeout_s}
    # In-memory databases only exist per connection, so share one.
    sync_engine = create_engine(
        raw_url,
        connect_args=sync_connect_args,
        poolclass=StaticPool if _is_memory_sqlite(raw_url) else NullPool,
    )

    @event.listens_for(sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        """
        Improve concurrency characteristics for SQLite.
        - WAL: allows concurrent readers while a writer is active
        - busy_timeout: wait for locks instead of failing immediately
        """
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute(f"PRAGMA busy_timeout={int(settings.sqlite_busy_timeout_ms)};")
        finally:
            cursor.close()
else:
    sync_url = raw_url
    if sync_url.drivername == "postgresql":
        sync_url = _with_driver(sync_url, "postgresql+psycopg")
    sync_engine = create_engine(
        sync_url,
        pool_pre_ping=True,
        pool_size=max(1, settings.db_pool_size),
        max_overflow=max(0, settings.db_max_overflow),
        pool_timeout=max(1, settings.db_pool_timeout_s),
        pool_recycle=max(0, settings.db_pool_recycle_s),
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)

# ----------------------------
# Async engine/session (API)
# ----------------------------

async_url = raw_url
async_engine_kwargs: dict = {"pool_pre_ping": True}
if _is_sqlite(async_url):
    if async_url.drivername == "sqlite":
        async_url = _with_driver(async_url, "sqlite+aiosqlite")
    async_engine_kwargs["connect_args"] = {"check_same_thread": False}
    if _is_memory_sqlite(async_url):
        async_engine_kwargs["poolclass"] = StaticPool
else:
    if async_url.drivername == "postgresql":
        async_url = _with_driver(async_url, "postgresql+asyncpg")
    async_engine_kwargs.update(
        {
            "pool_size": max(1, settings.db_pool_size),
            "max_overflow": max(0, settings.db_max_overflow),
            "pool_timeout": max(1, settings.db_pool_timeout_s),
            "pool_recycle": max(0, settings.db_pool_recycle_s),
        }
    )

async_engine = create_async_engine(async_url, **async_engine_kwargs)
AsyncSessionLocal = async_sessionmaker(async_engine, expire_on_commit=False, autoflush=False)

# ----------------------------
# Helpers
# ----------------------------

def init_db():
    """
    Create tables on SQLite for local dev.

    We avoid implicit `create_all()` on Postgres; schema is managed via Alembic.
    """
    if not _is_sqlite(raw_url):
        return
    from .models import Base
    Base.metadata.create_all(bind=sync_engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an AsyncSession."""
    async with AsyncSessionLocal() as session:
        yield session


def get_sync_db() -> Generator:
    """Dependency that yields a sync DB session (writes / background handoff)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
