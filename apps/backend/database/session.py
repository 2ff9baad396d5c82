"""
Database Session Management
===========================
Async SQLAlchemy engine and session factory shared by the API.
"""

from pathlib import Path
from typing import AsyncIterator, Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from config import get_settings, resolve_database_url
from logging_config import get_logger

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def _configure_sqlite_connection(dbapi_connection, connection_record):
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_sqlite_transaction(conn):
    conn.exec_driver_sql("BEGIN")


def init_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create (or replace) the global engine and session factory.

    SQLite connections are opened per checkout with foreign keys enforced
    and explicit transaction control, so cascades and SAVEPOINTs behave
    the same as on PostgreSQL.
    """
    global _engine, _session_factory

    url = resolve_database_url(database_url or get_settings().effective_database_url)

    if url.startswith("sqlite"):
        db_path = url.split("///", 1)[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(url, echo=False, poolclass=NullPool)
        event.listen(engine.sync_engine, "connect", _configure_sqlite_connection)
        event.listen(engine.sync_engine, "begin", _begin_sqlite_transaction)
    else:
        engine = create_async_engine(url, echo=False, pool_pre_ping=True)

    _engine = engine
    _session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    logger.info("Database engine initialized", driver=url.split(":", 1)[0])
    return engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory() -> async_sessionmaker:
    if _session_factory is None:
        init_engine()
    return _session_factory


async def create_tables() -> None:
    """Create all tables known to the ORM metadata."""
    from models import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def check_database() -> bool:
    """Round-trip a trivial query; used by the health endpoint."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database health check failed", error=str(e))
        return False


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""
    session = get_session_factory()()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
