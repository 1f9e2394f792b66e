from __future__ import annotations

from pathlib import Path  # noqa: TC003

import pytest  # noqa: TC002

from shiftdesk.config import storage


def test_storage_config_prefers_explicit_env(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    custom = tmp_path / "custom-data"
    monkeypatch.setenv("SHIFTDESK_DATA_DIR", str(custom))

    config = storage.get_storage_config()

    assert config.resolve_data_dir() == custom.resolve()
    assert config.auth_session_path() == custom.resolve() / storage.AUTH_SESSION_FILENAME


def test_database_uri_uses_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URI", "sqlite:///override.db")

    assert storage.get_database_config().uri == "sqlite:///override.db"


def test_database_uri_creates_data_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("DATABASE_URI", raising=False)
    monkeypatch.setenv("SHIFTDESK_DATA_DIR", str(tmp_path / "data-dir"))

    uri = storage.get_database_config().uri

    expected_path = (tmp_path / "data-dir" / storage.DEFAULT_DB_FILENAME).resolve()
    assert uri == f"sqlite+pysqlite:///{expected_path}"
    assert expected_path.parent.exists()
