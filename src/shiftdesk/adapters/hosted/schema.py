"""Pydantic models for hosted backend payloads (REST errors, auth tokens, realtime frames)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shiftdesk.domain.ports.auth import AuthSession
from shiftdesk.domain.ports.store import ChangeEvent, ChangeType


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class HostedBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RestErrorResponse(HostedBaseModel):
    """Error body of the REST data API."""

    message: str | None = None
    code: str | None = None
    details: str | None = None
    hint: str | None = None

    _normalize = field_validator("message", "details", "hint", mode="before")(_blank_to_none)

    def describe(self) -> str:
        parts = [part for part in (self.message, self.details, self.hint) if part]
        return " | ".join(parts) if parts else "Unknown backend error"


class AuthErrorResponse(HostedBaseModel):
    """Error body of the auth API; field names differ between endpoints."""

    error: str | None = None
    error_description: str | None = None
    msg: str | None = None
    message: str | None = None
    code: int | str | None = None

    def describe(self) -> str:
        for candidate in (self.error_description, self.msg, self.message, self.error):
            if candidate:
                return candidate
        return "Authentication failed"


class AuthUser(HostedBaseModel):
    id: str
    email: str | None = None


class TokenResponse(HostedBaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int | None = None
    expires_at: int | None = None
    refresh_token: str | None = None
    user: AuthUser

    def to_session(self, *, now: datetime | None = None) -> AuthSession:
        if self.user.email is None:
            raise ValueError("Auth response carries no email for the signed-in user")
        expires_at: datetime | None = None
        if self.expires_at is not None:
            expires_at = datetime.fromtimestamp(self.expires_at, tz=UTC)
        elif self.expires_in is not None:
            expires_at = (now or datetime.now(UTC)) + timedelta(seconds=self.expires_in)
        return AuthSession(
            user_id=self.user.id,
            email=self.user.email,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=expires_at,
        )


class RealtimeMessage(HostedBaseModel):
    """One Phoenix channel frame from the realtime socket."""

    topic: str
    event: str
    payload: dict[str, Any] = Field(default_factory=dict)
    ref: str | int | None = None


class PostgresChange(HostedBaseModel):
    table: str
    type: ChangeType
    record: dict[str, Any] | None = None
    old_record: dict[str, Any] | None = None

    def to_event(self) -> ChangeEvent:
        # deletes arrive with an empty ``record`` and only the key in ``old_record``
        return ChangeEvent(
            self.table, self.type, new=self.record or None, old=self.old_record or None
        )


class PostgresChangesPayload(HostedBaseModel):
    data: PostgresChange


__all__ = [
    "AuthErrorResponse",
    "AuthUser",
    "HostedBaseModel",
    "PostgresChange",
    "PostgresChangesPayload",
    "RealtimeMessage",
    "RestErrorResponse",
    "TokenResponse",
]
