"""Timeouts, retries and rate limits for the hosted backend HTTP clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from collections.abc import Mapping

IDEMPOTENT_READS = frozenset({"GET", "HEAD"})
TRANSIENT_STATUSES = frozenset({502, 503, 504})


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Which failed requests are sent again, and how long to wait in between.

    Only methods in ``allowed_methods`` are retried, so ticket and link writes
    are never repeated behind the caller's back.
    """

    total: int = 2
    backoff_factor: float = 0.25
    max_backoff_wait: float = 5.0
    respect_retry_after_header: bool = True
    allowed_methods: frozenset[str] = IDEMPOTENT_READS
    status_forcelist: frozenset[int] = TRANSIENT_STATUSES
    retry_on_exceptions: tuple[type[httpx.HTTPError], ...] = (
        httpx.ConnectError,
        httpx.ConnectTimeout,
        httpx.RemoteProtocolError,
    )
    backoff_jitter: float = 0.5


NO_RETRIES = RetryPolicy(total=0)
READ_RETRIES = RetryPolicy()


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 15.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    default_headers: Mapping[str, str] = field(default_factory=dict)


__all__ = [
    "IDEMPOTENT_READS",
    "NO_RETRIES",
    "READ_RETRIES",
    "TRANSIENT_STATUSES",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
]
