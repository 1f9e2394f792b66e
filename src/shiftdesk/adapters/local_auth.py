"""Auth gateway for the local store, which has no accounts of its own."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from shiftdesk.adapters.session_file import StoredSession
from shiftdesk.domain.ports.auth import AuthSession

if TYPE_CHECKING:
    from shiftdesk.adapters.session_file import SessionFile

log = getLogger(__name__)

LOCAL_TOKEN = "local"


class LocalAuthGateway:
    """Accepts any credentials and remembers the email in the session file.

    The local database trusts its single operator, so the email is only used as
    the identity that owns shifts and authors comments.
    """

    def __init__(self, session_file: SessionFile) -> None:
        self.session_file = session_file

    async def sign_in(self, email: str, password: str) -> AuthSession:
        _ = password
        session = AuthSession(user_id=email, email=email, access_token=LOCAL_TOKEN)
        self.session_file.save(StoredSession(email=email, user_id=email))
        log.debug("Local sign-in for %s", email)
        return session

    async def sign_out(self, session: AuthSession) -> None:
        _ = session
        self.session_file.clear()

    async def restore(self) -> AuthSession | None:
        stored = self.session_file.load()
        if stored is None:
            return None
        return AuthSession(user_id=stored.user_id, email=stored.email, access_token=LOCAL_TOKEN)

    async def refresh(self, session: AuthSession) -> AuthSession:
        return session


__all__ = ["LocalAuthGateway"]
