"""Explicitly passed authentication context."""

from __future__ import annotations

import asyncio
import itertools
from datetime import timedelta
from logging import getLogger
from typing import TYPE_CHECKING

from shiftdesk.domain.clock import utcnow
from shiftdesk.domain.errors import DataError, NotSignedInError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from shiftdesk.domain.clock import Clock
    from shiftdesk.domain.ports.auth import AuthGateway, AuthSession
    from shiftdesk.domain.ports.store import Unsubscribe

log = getLogger(__name__)

# access tokens are renewed this long before they expire
REFRESH_MARGIN = timedelta(seconds=60)

type SessionListener = Callable[[AuthSession | None], None]


class AuthContext:
    """Holds the signed-in session for the lifetime of the application.

    ``initialize`` restores a persisted session on start-up; ``sign_in`` and
    ``sign_out`` replace it. Listeners are told about every change.
    """

    def __init__(
        self,
        gateway: AuthGateway,
        *,
        clock: Clock = utcnow,
        refresh_margin: timedelta = REFRESH_MARGIN,
    ) -> None:
        self._gateway = gateway
        self._clock = clock
        self._refresh_margin = refresh_margin
        self._refresh_lock = asyncio.Lock()
        self._session: AuthSession | None = None
        self._initialized = False
        self._listeners: dict[int, SessionListener] = {}
        self._listener_ids = itertools.count(1)

    @property
    def session(self) -> AuthSession | None:
        return self._session

    @property
    def signed_in(self) -> bool:
        return self._session is not None

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def user_id(self) -> str:
        """The signed-in user's email; raises ``NotSignedInError`` when signed out."""

        if self._session is None:
            raise NotSignedInError("Sign in first")
        return self._session.email

    async def initialize(self) -> AuthSession | None:
        restored = await self._gateway.restore()
        self._initialized = True
        if restored is not None:
            log.info("Restored session for %s", restored.email)
        self._set(restored)
        return restored

    async def sign_in(self, email: str, password: str) -> AuthSession:
        email = email.strip()
        if not email or not password:
            raise ValidationError("Email and password are required")
        session = await self._gateway.sign_in(email, password)
        log.info("Signed in as %s", session.email)
        self._set(session)
        return session

    async def sign_out(self) -> None:
        session = self._session
        if session is None:
            return
        try:
            await self._gateway.sign_out(session)
        finally:
            self._set(None)
        log.info("Signed out %s", session.email)

    async def ensure_fresh(self) -> AuthSession | None:
        """Return the session, first refreshing an access token that is about to expire.

        A failed refresh is logged and the current session kept, so the next
        request reports the backend's own authorization error.
        """

        session = self._session
        if session is None or not session.expires_within(self._refresh_margin, now=self._clock()):
            return session
        async with self._refresh_lock:
            if self._session is not session:
                return self._session
            try:
                refreshed = await self._gateway.refresh(session)
            except DataError as exc:
                log.warning("Could not refresh the session for %s: %s", session.email, exc)
                return session
            log.debug("Refreshed access token for %s", refreshed.email)
            self._set(refreshed)
            return refreshed

    def add_listener(self, listener: SessionListener) -> Unsubscribe:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = listener

        def remove() -> None:
            self._listeners.pop(listener_id, None)

        return remove

    def _set(self, session: AuthSession | None) -> None:
        self._session = session
        for listener in list(self._listeners.values()):
            try:
                listener(session)
            except Exception:
                log.exception("Session listener failed")


__all__ = ["REFRESH_MARGIN", "AuthContext", "SessionListener"]
