"""Persisted sign-in session in the data directory."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, ValidationError

if TYPE_CHECKING:
    from pathlib import Path

log = getLogger(__name__)


class StoredSession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str
    user_id: str
    refresh_token: str | None = None


class SessionFile:
    """JSON file holding just enough to restore a session on the next start."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> StoredSession | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return StoredSession.model_validate_json(raw)
        except ValidationError:
            log.warning("Ignoring unreadable session file %s", self.path)
            self.clear()
            return None

    def save(self, session: StoredSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(session.model_dump_json(), encoding="utf-8")
        self.path.chmod(0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


__all__ = ["SessionFile", "StoredSession"]
