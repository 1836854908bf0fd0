"""Alembic environment for Assignmint.

At start-up ``assignmint.database`` hands over its live connection through
``config.attributes["connection"]``. From the command line
(``alembic upgrade head``) a synchronous engine is built from
``sqlalchemy.url`` or, failing that, from ``ASSIGNMINT_DATABASE_URL``.
Batch mode is always on because SQLite cannot ALTER most constraints.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlmodel import SQLModel

import assignmint.db_models  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata


def _cli_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    from assignmint.config import settings

    database = settings.database_url
    if "://" not in database:
        return f"sqlite:///{database}"
    # The app uses the async driver; Alembic's CLI runs synchronously
    return database.replace("sqlite+aiosqlite", "sqlite")


def _run(connection) -> None:
    context.configure(
        connection=connection, target_metadata=target_metadata, render_as_batch=True
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    context.configure(
        url=_cli_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    shared = config.attributes.get("connection")
    if shared is not None:
        _run(shared)
        return

    engine = create_engine(_cli_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        _run(connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
