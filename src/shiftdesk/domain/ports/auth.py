"""Port for the hosted authentication service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class AuthSession:
    """Signed-in session; ``email`` is the stable user identifier."""

    user_id: str
    email: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def expires_within(self, margin: timedelta, *, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at - margin <= now


@runtime_checkable
class AuthGateway(Protocol):
    async def sign_in(self, email: str, password: str) -> AuthSession: ...

    async def sign_out(self, session: AuthSession) -> None: ...

    async def restore(self) -> AuthSession | None: ...

    async def refresh(self, session: AuthSession) -> AuthSession: ...


__all__ = ["AuthGateway", "AuthSession"]
