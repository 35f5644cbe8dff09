"""SQLAlchemy async engine & session for the strmsync SQLite store."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from strmsync.config import settings
from strmsync.models.base import Base

logger = logging.getLogger(__name__)


def _sqlite_pragmas() -> list[str]:
    return [
        "PRAGMA journal_mode=WAL",
        "PRAGMA synchronous=NORMAL",
        f"PRAGMA cache_size=-{int(settings.db_cache_size_kb)}",
        "PRAGMA foreign_keys=ON",
        f"PRAGMA busy_timeout={int(settings.db_busy_timeout_ms)}",
    ]


def _configure_sqlite(dbapi_conn, _connection_record):
    cursor = dbapi_conn.cursor()
    for pragma in _sqlite_pragmas():
        cursor.execute(pragma)
    cursor.close()


def database_url(path: str | Path) -> str:
    return f"sqlite+aiosqlite:///{Path(path)}"


db_path = Path(settings.database_path)
db_path.parent.mkdir(parents=True, exist_ok=True)

engine = create_async_engine(
    database_url(db_path),
    echo=settings.debug and settings.log_level == "DEBUG",
    pool_size=settings.max_db_connections,
    max_overflow=0,
)

event.listen(engine.sync_engine, "connect", _configure_sqlite)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency — yields a session, rolled back if the request fails."""
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the task, run log, file history and notification tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("strmsync database ready at %s (busy_timeout=%dms)", db_path,
                settings.db_busy_timeout_ms)
