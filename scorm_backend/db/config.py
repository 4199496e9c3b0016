"""Database engine and session wiring for package and runtime records.

``DATABASE_URL`` selects the backend; without it a SQLite file next to the
project is used. Postgres works through ``postgresql+asyncpg://...``. Both
dialects support the ``ON CONFLICT`` insert the runtime repository relies on.

SQLite serializes writers, so concurrent first launches of the same package
wait on the file lock for up to ``SQLITE_BUSY_TIMEOUT`` seconds instead of
failing with ``database is locked``.
"""
from __future__ import annotations
import os
import pathlib
from typing import Any, AsyncGenerator, Dict
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)

_project_dir = pathlib.Path(__file__).parent.parent.parent
DEFAULT_SQLITE_URL = f"sqlite+aiosqlite:///{_project_dir / 'scorm.db'}"
DATABASE_URL = os.getenv("DATABASE_URL", DEFAULT_SQLITE_URL)
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"
SQLITE_BUSY_TIMEOUT = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))


def engine_options(url: str) -> Dict[str, Any]:
    """Dialect specific keyword arguments for ``create_async_engine``."""
    if make_url(url).get_backend_name() == "sqlite":
        return {"connect_args": {"timeout": SQLITE_BUSY_TIMEOUT}}
    return {"pool_pre_ping": True}


def build_engine(url: str = DATABASE_URL, **overrides: Any) -> AsyncEngine:
    options = {"echo": SQL_ECHO, **engine_options(url), **overrides}
    return create_async_engine(url, **options)


engine = build_engine()

SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async DB session."""
    async with SessionLocal() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


async def dispose_engine() -> None:
    await engine.dispose()
