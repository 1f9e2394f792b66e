"""Alembic environment for the shiftdesk local store.

SQLite cannot alter most constraints in place, so every run uses batch mode.
"""

from __future__ import annotations

from contextlib import ExitStack
from typing import TYPE_CHECKING

from alembic import context
from sqlalchemy import create_engine, pool

from shiftdesk.adapters.sqlalchemy.mappings import metadata
from shiftdesk.config import get_database_config

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection

config = context.config


def _run(**options: object) -> None:
    context.configure(
        target_metadata=metadata,
        render_as_batch=True,
        compare_type=True,
        **options,
    )
    with context.begin_transaction():
        context.run_migrations()


def _url() -> str:
    return config.get_main_option("sqlalchemy.url") or get_database_config().uri


def _run_on(connection: Connection | None) -> None:
    with ExitStack() as stack:
        if connection is None:
            engine = create_engine(_url(), poolclass=pool.NullPool)
            stack.callback(engine.dispose)
            connection = stack.enter_context(engine.connect())
        _run(connection=connection)


if context.is_offline_mode():
    _run(url=_url(), literal_binds=True)
else:
    # upgrade_head passes the store's own connection so in-memory databases see the schema
    _run_on(config.attributes.get("connection"))
