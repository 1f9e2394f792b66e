"""Hosted backend (BaaS) configuration values."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .env import env_int, require_env_vars
from .errors import ConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

BACKEND_URL_VAR = "SHIFTDESK_BACKEND_URL"
BACKEND_KEY_VAR = "SHIFTDESK_BACKEND_ANON_KEY"
BACKEND_TIMEOUT_SECONDS = 15.0
# Data API reads are sent once unless this is set; writes are never retried.
BACKEND_READ_RETRIES_VAR = "SHIFTDESK_BACKEND_READ_RETRIES"


@dataclass(frozen=True, slots=True)
class HostedBackendConfig:
    """Holds connection values for the hosted data, auth and realtime APIs."""

    url: str
    anon_key: str
    resilience: ResilienceConfig

    @property
    def rest_url(self) -> str:
        return f"{self.url}/rest/v1"

    @property
    def auth_url(self) -> str:
        return f"{self.url}/auth/v1"

    @property
    def realtime_url(self) -> str:
        if self.url.startswith("https://"):
            base = "wss://" + self.url.removeprefix("https://")
        else:
            base = "ws://" + self.url.removeprefix("http://")
        return f"{base}/realtime/v1/websocket"


def hosted_backend_configured() -> bool:
    """Return whether the environment points at a hosted backend."""

    return all((os.getenv(name) or "").strip() for name in (BACKEND_URL_VAR, BACKEND_KEY_VAR))


def get_hosted_backend_config(*, resilience: ResilienceConfig | None = None) -> HostedBackendConfig:
    values = require_env_vars((BACKEND_URL_VAR, BACKEND_KEY_VAR))
    url = values[BACKEND_URL_VAR].rstrip("/")
    read_retries = env_int(BACKEND_READ_RETRIES_VAR, 0)
    if read_retries < 0:
        raise ConfigurationError(f"{BACKEND_READ_RETRIES_VAR} must not be negative")
    return HostedBackendConfig(
        url=url,
        anon_key=values[BACKEND_KEY_VAR],
        resilience=resilience
        or ResilienceConfig(
            name="backend",
            timeout_seconds=BACKEND_TIMEOUT_SECONDS,
            retry=RetryPolicy(total=read_retries),
            ratelimit=RateLimit(max_calls=20, per_seconds=1.0),
        ),
    )
