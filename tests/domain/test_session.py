from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from shiftdesk.adapters.local_auth import LocalAuthGateway
from shiftdesk.adapters.session_file import SessionFile
from shiftdesk.domain.errors import DataError, NotSignedInError, ValidationError
from shiftdesk.domain.ports.auth import AuthSession
from shiftdesk.domain.session import AuthContext
from tests.helpers.tickets import FixedClock

if TYPE_CHECKING:
    from pathlib import Path


class RejectingSignOutGateway:
    def __init__(self) -> None:
        self.signed_out: list[str] = []

    async def sign_in(self, email: str, password: str) -> AuthSession:
        del password
        return AuthSession(user_id="uid-1", email=email, access_token="token")

    async def sign_out(self, session: AuthSession) -> None:
        self.signed_out.append(session.email)
        raise DataError("network down")

    async def restore(self) -> AuthSession | None:
        return None

    async def refresh(self, session: AuthSession) -> AuthSession:
        return session


def test_user_id_requires_session(tmp_path: Path) -> None:
    context = AuthContext(LocalAuthGateway(SessionFile(tmp_path / "session.json")))

    with pytest.raises(NotSignedInError):
        _ = context.user_id


def test_sign_in_persists_and_restores(tmp_path: Path) -> None:
    path = tmp_path / "session.json"
    events: list[str | None] = []

    async def scenario() -> tuple[AuthContext, AuthContext]:
        first = AuthContext(LocalAuthGateway(SessionFile(path)))
        first.add_listener(lambda session: events.append(session.email if session else None))
        await first.initialize()
        await first.sign_in(" dana@example.com ", "secret")
        second = AuthContext(LocalAuthGateway(SessionFile(path)))
        await second.initialize()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.user_id == "dana@example.com"
    assert second.initialized
    assert second.signed_in
    assert second.user_id == "dana@example.com"
    assert events == [None, "dana@example.com"]


def test_sign_in_requires_credentials(tmp_path: Path) -> None:
    context = AuthContext(LocalAuthGateway(SessionFile(tmp_path / "session.json")))

    with pytest.raises(ValidationError):
        asyncio.run(context.sign_in("dana@example.com", ""))

    assert not context.signed_in


def test_sign_out_clears_session_even_when_gateway_fails() -> None:
    gateway = RejectingSignOutGateway()
    context = AuthContext(gateway)

    async def scenario() -> None:
        await context.sign_in("dana@example.com", "secret")
        await context.sign_out()

    with pytest.raises(DataError):
        asyncio.run(scenario())

    assert gateway.signed_out == ["dana@example.com"]
    assert not context.signed_in


def test_sign_out_forgets_stored_session(tmp_path: Path) -> None:
    path = tmp_path / "session.json"

    async def scenario() -> AuthContext:
        context = AuthContext(LocalAuthGateway(SessionFile(path)))
        await context.sign_in("dana@example.com", "secret")
        await context.sign_out()
        restored = AuthContext(LocalAuthGateway(SessionFile(path)))
        await restored.initialize()
        return restored

    restored = asyncio.run(scenario())

    assert not path.exists()
    assert not restored.signed_in


class ExpiringGateway:
    """Issues hour-long tokens and counts refreshes."""

    def __init__(self, clock: FixedClock) -> None:
        self.clock = clock
        self.refreshes = 0
        self.failing = False

    async def sign_in(self, email: str, password: str) -> AuthSession:
        del password
        return AuthSession(
            user_id="uid-1",
            email=email,
            access_token="token-0",
            refresh_token="refresh-0",
            expires_at=self.clock() + timedelta(hours=1),
        )

    async def sign_out(self, session: AuthSession) -> None:
        del session

    async def restore(self) -> AuthSession | None:
        return None

    async def refresh(self, session: AuthSession) -> AuthSession:
        await asyncio.sleep(0)
        if self.failing:
            raise DataError("auth service unavailable")
        self.refreshes += 1
        return replace(
            session,
            access_token=f"token-{self.refreshes}",
            expires_at=self.clock() + timedelta(hours=1),
        )


def test_ensure_fresh_refreshes_shortly_before_expiry() -> None:
    clock = FixedClock()
    gateway = ExpiringGateway(clock)
    context = AuthContext(gateway, clock=clock, refresh_margin=timedelta(seconds=60))
    tokens: list[str | None] = []
    context.add_listener(lambda session: tokens.append(session.access_token if session else None))

    async def scenario() -> tuple[str, list[str]]:
        await context.sign_in("dana@example.com", "secret")
        early = await context.ensure_fresh()
        assert early is not None
        clock.advance(minutes=59, seconds=30)
        concurrent = await asyncio.gather(context.ensure_fresh(), context.ensure_fresh())
        return early.access_token, [session.access_token for session in concurrent if session]

    early, concurrent = asyncio.run(scenario())

    assert early == "token-0"
    assert concurrent == ["token-1", "token-1"]
    assert gateway.refreshes == 1
    assert tokens == ["token-0", "token-1"]


def test_failed_refresh_keeps_current_session(caplog: pytest.LogCaptureFixture) -> None:
    clock = FixedClock()
    gateway = ExpiringGateway(clock)
    gateway.failing = True
    context = AuthContext(gateway, clock=clock)

    async def scenario() -> AuthSession | None:
        await context.sign_in("dana@example.com", "secret")
        clock.advance(hours=2)
        return await context.ensure_fresh()

    session = asyncio.run(scenario())

    assert session is not None
    assert session.access_token == "token-0"
    assert context.signed_in
    assert "Could not refresh the session" in caplog.text


def test_sessions_without_expiry_are_never_refreshed(tmp_path: Path) -> None:
    context = AuthContext(LocalAuthGateway(SessionFile(tmp_path / "session.json")))

    async def scenario() -> AuthSession | None:
        await context.sign_in("dana@example.com", "secret")
        return await context.ensure_fresh()

    session = asyncio.run(scenario())

    assert session is context.session
