"""Alembic migration helpers for the local SQLAlchemy store."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Final

from alembic import command
from alembic.config import Config

from shiftdesk.config import get_database_config

PROJECT_ROOT: Final[Path] = Path(__file__).resolve().parents[5]
PYPROJECT_PATH: Final[Path] = PROJECT_ROOT / "pyproject.toml"
MIGRATIONS_PATH: Final[Path] = Path(__file__).resolve().parent

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine


def _load_pyproject_options() -> dict[str, str]:
    """Read ``[tool.alembic]`` from pyproject.toml; an installed wheel has none."""

    try:
        with PYPROJECT_PATH.open("rb") as pyproject_file:
            document = tomllib.load(pyproject_file)
    except FileNotFoundError:
        return {}

    alembic_section = document.get("tool", {}).get("alembic", {})
    return {str(key): str(value) for key, value in alembic_section.items()}


def _resolve(path_value: str | None, default: Path) -> Path:
    if path_value is None:
        return default
    candidate = Path(path_value)
    return candidate if candidate.is_absolute() else (PROJECT_ROOT / candidate).resolve()


def build_config() -> Config:
    """Alembic config pointing at this package's migration scripts."""

    config = Config()
    options = _load_pyproject_options()

    script_path = _resolve(options.pop("script_location", None), MIGRATIONS_PATH)
    if not script_path.is_dir():
        script_path = MIGRATIONS_PATH
    config.set_main_option("script_location", str(script_path))
    config.set_main_option(
        "prepend_sys_path", str(_resolve(options.pop("prepend_sys_path", None), PROJECT_ROOT))
    )
    for key, value in options.items():
        config.set_main_option(key, value)
    return config


def upgrade_head(*, engine: Engine | None = None, database_uri: str | None = None) -> None:
    """Upgrade the database schema to the latest revision."""

    config = build_config()
    if engine is not None:
        with engine.begin() as connection:
            config.attributes["connection"] = connection
            command.upgrade(config, "head")
        return
    config.set_main_option("sqlalchemy.url", database_uri or get_database_config().uri)
    command.upgrade(config, "head")


__all__ = ["build_config", "upgrade_head"]
