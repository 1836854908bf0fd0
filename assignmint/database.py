"""Async SQLModel engine, session factory and schema migration on start-up."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from assignmint.db_models import Expert, Invite, Task  # noqa: F401

logger = logging.getLogger("assignmint.database")

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"
SQLITE_BUSY_TIMEOUT = 30

_engine = None
_session_factory = None


def sqlite_url(database: str) -> str:
    """Accept either a full SQLAlchemy URL or a bare file path."""
    if "://" in database:
        return database
    path = Path(database)
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite+aiosqlite:///{path}"


def _enable_sqlite_pragmas(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


async def init_db(url: str) -> None:
    global _engine, _session_factory
    url = sqlite_url(url)
    is_sqlite = url.startswith("sqlite")

    connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT} if is_sqlite else {}
    _engine = create_async_engine(url, connect_args=connect_args, pool_pre_ping=True)
    if is_sqlite:
        event.listen(_engine.sync_engine, "connect", _enable_sqlite_pragmas)
    _session_factory = sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)  # type: ignore[call-overload]

    async with _engine.begin() as conn:
        # Alembic's command API is synchronous
        await conn.run_sync(_upgrade_schema)


def _upgrade_schema(sync_conn) -> None:
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    # env.py reuses this connection instead of building its own engine
    cfg.attributes["connection"] = sync_conn

    current = MigrationContext.configure(sync_conn).get_current_revision()
    head = ScriptDirectory.from_config(cfg).get_current_head()
    if current == head:
        logger.debug("Schema up to date at revision %s", current)
        return
    logger.info("Migrating schema %s -> %s", current or "(empty)", head)
    command.upgrade(cfg, "head")


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    assert _session_factory is not None, "Database not initialised, call init_db() first"
    async with _session_factory() as session:
        yield session


def get_session_factory() -> sessionmaker:
    assert _session_factory is not None, "Database not initialised, call init_db() first"
    return _session_factory
