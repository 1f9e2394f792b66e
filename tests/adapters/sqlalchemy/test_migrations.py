from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import inspect

from shiftdesk.adapters.sqlalchemy.mappings import TABLES
from shiftdesk.adapters.sqlalchemy.migrations import build_config, upgrade_head
from shiftdesk.adapters.sqlalchemy.store import create_store_engine

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.engine import Engine


def test_upgrade_creates_every_mapped_table(sqlite_engine: Engine) -> None:
    names = set(inspect(sqlite_engine).get_table_names())

    assert set(TABLES) <= names
    assert "alembic_version" in names


def test_upgrade_by_uri_is_idempotent(tmp_path: Path) -> None:
    uri = f"sqlite+pysqlite:///{tmp_path / 'shiftdesk.db'}"

    upgrade_head(database_uri=uri)
    upgrade_head(database_uri=uri)

    engine = create_store_engine(uri)
    try:
        columns = {column["name"] for column in inspect(engine).get_columns("shift_tickets")}
    finally:
        engine.dispose()
    assert {"shift_id", "ticket_id", "priority", "completed", "completed_at"} <= columns


def test_build_config_points_at_packaged_scripts() -> None:
    config = build_config()

    script_location = config.get_main_option("script_location")

    assert script_location is not None
    assert script_location.endswith("migrations")
