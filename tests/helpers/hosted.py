"""HTTP fakes for the hosted backend adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from shiftdesk.adapters.http_resilience import ResilientClient
from shiftdesk.config import NO_RETRIES, HostedBackendConfig, ResilienceConfig

if TYPE_CHECKING:
    from collections.abc import Callable


def make_backend_config() -> HostedBackendConfig:
    return HostedBackendConfig(
        url="https://backend.example.com",
        anon_key="anon-key",
        resilience=ResilienceConfig(name="backend", retry=NO_RETRIES),
    )


def client_factory_for(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    base_url: str,
) -> Callable[[HostedBackendConfig], ResilientClient]:
    async def async_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)

    def factory(config: HostedBackendConfig) -> ResilientClient:
        client = ResilientClient(config.resilience)
        client._client = httpx.AsyncClient(  # noqa: SLF001  # type: ignore[reportPrivateUsage]
            base_url=base_url,
            headers={"apikey": config.anon_key},
            transport=httpx.MockTransport(async_handler),
        )
        return client

    return factory
