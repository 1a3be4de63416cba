"""Async SQLite engine construction and schema bootstrap.

Uses SQLAlchemy's native async support with aiosqlite for non-blocking
database operations.
"""

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

# Registers every table on SQLModel.metadata.
from wikigen.models import tables  # noqa: F401


def create_async_engine_from_path(db_path: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine for the given database path.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.

    Returns:
        AsyncEngine instance configured for aiosqlite with foreign keys on.
    """
    if db_path == ":memory:":
        # One shared connection, otherwise each session sees an empty database.
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


async def initialize_schema(
    engine: AsyncEngine,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> None:
    """Create database tables and indexes if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    (logger or structlog.get_logger(__name__)).info("database_initialized", url=str(engine.url))
