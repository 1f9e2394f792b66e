"""httpx client wrapper used by the hosted data and auth adapters."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, TypedDict, Unpack

import httpx
from aiolimiter import AsyncLimiter
from httpx_retries import Retry, RetryTransport

if TYPE_CHECKING:
    from types import TracebackType

    from httpx._types import HeaderTypes, QueryParamTypes, RequestContent, URLTypes

    from shiftdesk.config.http_resilience import ResilienceConfig, RetryPolicy

log = getLogger(__name__)


class RequestOptions(TypedDict, total=False):
    content: RequestContent | None
    json: object
    params: QueryParamTypes | None
    headers: HeaderTypes | None


def build_retry(policy: RetryPolicy) -> Retry:
    return Retry(
        total=policy.total,
        backoff_factor=policy.backoff_factor,
        max_backoff_wait=policy.max_backoff_wait,
        respect_retry_after_header=policy.respect_retry_after_header,
        allowed_methods=tuple(policy.allowed_methods),
        status_forcelist=tuple(policy.status_forcelist),
        retry_on_exceptions=policy.retry_on_exceptions,
        backoff_jitter=policy.backoff_jitter,
    )


def _build_client(config: ResilienceConfig) -> httpx.AsyncClient:
    transport = RetryTransport(retry=build_retry(config.retry))
    if config.base_url is None:
        return httpx.AsyncClient(
            timeout=config.timeout_seconds,
            headers=dict(config.default_headers),
            transport=transport,
        )
    return httpx.AsyncClient(
        base_url=config.base_url,
        timeout=config.timeout_seconds,
        headers=dict(config.default_headers),
        transport=transport,
    )


class ResilientClient:
    """``httpx.AsyncClient`` behind an optional rate limiter and a retry transport.

    Every request of one client shares the limiter, so a burst of link updates
    during reconciliation stays within the backend's rate limit.
    """

    def __init__(self, config: ResilienceConfig) -> None:
        self.config = config
        self._limiter = (
            AsyncLimiter(config.ratelimit.max_calls, config.ratelimit.per_seconds)
            if config.ratelimit is not None
            else None
        )
        self._client = _build_client(config)

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        if self._limiter is not None and not self._limiter.has_capacity():
            log.debug("%s client throttled before %s %s", self.config.name, method, url)
        if self._limiter is None:
            return await self._client.request(method, url, **kwargs)
        async with self._limiter:
            return await self._client.request(method, url, **kwargs)

    async def get(self, url: URLTypes, **kwargs: Unpack[RequestOptions]) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: URLTypes, **kwargs: Unpack[RequestOptions]) -> httpx.Response:
        return await self.request("POST", url, **kwargs)


__all__ = ["RequestOptions", "ResilientClient", "build_retry"]
