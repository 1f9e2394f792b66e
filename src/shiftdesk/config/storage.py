"""Where shiftdesk keeps its local database and remembered sign-in."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Final

APP_DIR_NAME: Final[str] = "shiftdesk"
DATA_DIR_VAR: Final[str] = "SHIFTDESK_DATA_DIR"
DATABASE_URI_VAR: Final[str] = "DATABASE_URI"
DEFAULT_DB_FILENAME: Final[str] = "shiftdesk.db"
AUTH_SESSION_FILENAME: Final[str] = "session.json"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Files under one data directory; the directory is created on first use."""

    data_dir: Path
    database_filename: str = DEFAULT_DB_FILENAME
    auth_session_filename: str = AUTH_SESSION_FILENAME

    def resolve_data_dir(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def _file(self, filename: str, *, ensure: bool) -> Path:
        directory = self.resolve_data_dir()
        if ensure:
            directory.mkdir(parents=True, exist_ok=True)
        return directory / filename

    def database_path(self, *, ensure: bool = True) -> Path:
        return self._file(self.database_filename, ensure=ensure)

    def auth_session_path(self, *, ensure: bool = True) -> Path:
        return self._file(self.auth_session_filename, ensure=ensure)

    def database_uri(self) -> str:
        return f"sqlite+pysqlite:///{self.database_path()}"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


def _platform_data_home() -> Path:
    if sys.platform == "win32":
        local = os.getenv("LOCALAPPDATA")
        return Path(local) if local else Path.home() / "AppData" / "Local"
    xdg = os.getenv("XDG_DATA_HOME")
    return Path(xdg) if xdg else Path.home() / ".local" / "share"


def get_storage_config() -> StorageConfig:
    override = (os.getenv(DATA_DIR_VAR) or "").strip()
    data_dir = Path(override) if override else _platform_data_home() / APP_DIR_NAME
    return StorageConfig(data_dir=data_dir)


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    """``DATABASE_URI`` when set, otherwise a SQLite file in the data directory."""

    override = (os.getenv(DATABASE_URI_VAR) or "").strip()
    if override:
        return DatabaseConfig(uri=override)
    return DatabaseConfig(uri=(storage or get_storage_config()).database_uri())
