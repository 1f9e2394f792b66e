"""SQLAlchemy adapter package for the local store."""

from __future__ import annotations

from .mappings import TABLES, create_all_tables, metadata
from .store import (
    SqlAlchemyRemoteStore,
    StartupError,
    configured_engine,
    create_store_engine,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "TABLES",
    "SqlAlchemyRemoteStore",
    "StartupError",
    "configured_engine",
    "create_all_tables",
    "create_store_engine",
    "is_started",
    "metadata",
    "shutdown",
    "startup",
]
