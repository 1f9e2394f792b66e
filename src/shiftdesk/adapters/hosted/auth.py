"""``AuthGateway`` for the hosted GoTrue-style auth API."""

from __future__ import annotations

import json
from dataclasses import replace
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError as PydanticValidationError

from shiftdesk.adapters.http_resilience import ResilientClient
from shiftdesk.adapters.session_file import StoredSession
from shiftdesk.domain.errors import DataError

from .schema import AuthErrorResponse, TokenResponse

if TYPE_CHECKING:
    from collections.abc import Callable

    from shiftdesk.adapters.session_file import SessionFile
    from shiftdesk.config.backend import HostedBackendConfig
    from shiftdesk.domain.ports.auth import AuthSession

log = getLogger(__name__)


class AuthenticationError(DataError):
    """Raised when the auth API rejects credentials or a refresh token."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def _default_client_factory(config: HostedBackendConfig) -> ResilientClient:
    resilience = replace(
        config.resilience,
        name="backend-auth",
        base_url=config.auth_url,
        default_headers={"apikey": config.anon_key},
    )
    return ResilientClient(resilience)


class HostedAuthGateway:
    """Password sign-in, sign-out, token refresh and refresh-token restore.

    The refresh token of the current session is kept in ``session_file`` so the
    next process start can restore it.
    """

    def __init__(
        self,
        config: HostedBackendConfig,
        session_file: SessionFile,
        *,
        client_factory: Callable[[HostedBackendConfig], ResilientClient] = (
            _default_client_factory
        ),
    ) -> None:
        self.config = config
        self.session_file = session_file
        self._client = client_factory(config)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def sign_in(self, email: str, password: str) -> AuthSession:
        session = await self._token("password", {"email": email, "password": password})
        self._remember(session)
        return session

    async def sign_out(self, session: AuthSession) -> None:
        try:
            response = await self._client.post(
                "/logout", headers={"Authorization": f"Bearer {session.access_token}"}
            )
        except httpx.HTTPError as exc:
            log.warning("Sign-out request failed: %s", exc)
        else:
            if response.is_error and response.status_code not in (401, 403, 404):
                log.warning("Sign-out answered HTTP %s", response.status_code)
        finally:
            self.session_file.clear()

    async def restore(self) -> AuthSession | None:
        stored = self.session_file.load()
        if stored is None or not stored.refresh_token:
            return None
        try:
            session = await self._token("refresh_token", {"refresh_token": stored.refresh_token})
        except AuthenticationError as exc:
            if exc.status_code >= 500:
                raise
            log.info("Stored session for %s expired: %s", stored.email, exc)
            self.session_file.clear()
            return None
        self._remember(session)
        return session

    async def refresh(self, session: AuthSession) -> AuthSession:
        if not session.refresh_token:
            raise AuthenticationError("Session has no refresh token", status_code=401)
        refreshed = await self._token("refresh_token", {"refresh_token": session.refresh_token})
        self._remember(refreshed)
        return refreshed

    def _remember(self, session: AuthSession) -> None:
        self.session_file.save(
            StoredSession(
                email=session.email,
                user_id=session.user_id,
                refresh_token=session.refresh_token,
            )
        )

    async def _token(self, grant_type: str, body: dict[str, str]) -> AuthSession:
        try:
            response = await self._client.post(
                "/token", params={"grant_type": grant_type}, json=body
            )
        except httpx.HTTPError as exc:
            raise DataError(f"Auth request failed: {exc}") from exc
        if response.is_error:
            raise self._error(response)
        try:
            return TokenResponse.model_validate(response.json()).to_session()
        except (json.JSONDecodeError, PydanticValidationError, ValueError) as exc:
            raise DataError(f"Unexpected auth response: {exc}") from exc

    def _error(self, response: httpx.Response) -> AuthenticationError:
        try:
            message = AuthErrorResponse.model_validate(response.json()).describe()
        except (json.JSONDecodeError, PydanticValidationError):
            message = response.text.strip() or response.reason_phrase
        return AuthenticationError(message, status_code=response.status_code)


__all__ = ["AuthenticationError", "HostedAuthGateway"]
