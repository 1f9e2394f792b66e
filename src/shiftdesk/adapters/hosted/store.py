"""``RemoteStore`` over a hosted PostgREST-style data API."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import date, datetime
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError as PydanticValidationError

from shiftdesk.adapters.changefeed import ChangeFeed
from shiftdesk.adapters.http_resilience import ResilientClient
from shiftdesk.domain.errors import DataError
from shiftdesk.domain.model import format_timestamp
from shiftdesk.domain.ports.query import (
    AnyContains,
    Contains,
    Eq,
    IsNull,
    QueryResult,
    escape_like,
)
from shiftdesk.domain.ports.store import ChangeEvent, ChangeType

from .schema import RestErrorResponse

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from shiftdesk.config.backend import HostedBackendConfig
    from shiftdesk.domain.model import Row
    from shiftdesk.domain.ports.query import Filter, OrderBy, Select
    from shiftdesk.domain.ports.store import ChangeCallback, Unsubscribe

    from .realtime import RealtimeListener, TokenProvider

log = getLogger(__name__)

_RETURN_ROWS = "return=representation"
_QUOTED_CHARACTERS = frozenset(',.:()"\\ ')


class HostedAPIError(DataError):
    """Raised when the data API answers with an error status."""

    def __init__(self, message: str, *, status_code: int, code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def _jsonable(value: object) -> object:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def _encode_row(row: Mapping[str, object]) -> dict[str, object]:
    return {key: _jsonable(value) for key, value in row.items()}


def _literal(value: object) -> str:
    encoded = _jsonable(value)
    if isinstance(encoded, bool):
        return "true" if encoded else "false"
    return str(encoded)


def _quote(value: str) -> str:
    """Quote a value inside an ``or=(...)`` list when it holds reserved characters."""

    if not any(character in _QUOTED_CHARACTERS for character in value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _ilike_pattern(text: str) -> str:
    return f"*{escape_like(text)}*"


def filter_params(filters: Sequence[Filter]) -> list[tuple[str, str]]:
    """Translate filters into PostgREST query parameters."""

    params: list[tuple[str, str]] = []
    for item in filters:
        if isinstance(item, Eq):
            if item.value is None:
                params.append((item.column, "is.null"))
            else:
                params.append((item.column, f"eq.{_literal(item.value)}"))
        elif isinstance(item, IsNull):
            params.append((item.column, "is.null"))
        elif isinstance(item, Contains):
            params.append((item.column, f"ilike.{_ilike_pattern(item.text)}"))
        elif isinstance(item, AnyContains):
            pattern = _quote(_ilike_pattern(item.text))
            clauses = ",".join(f"{column}.ilike.{pattern}" for column in item.columns)
            params.append(("or", f"({clauses})"))
        else:
            raise DataError(f"Unsupported filter {item!r}")
    return params


def order_param(order: Sequence[OrderBy]) -> str:
    parts: list[str] = []
    for item in order:
        direction = "desc" if item.descending else "asc"
        nulls = "nullslast" if item.nulls_last else "nullsfirst"
        parts.append(f"{item.column}.{direction}.{nulls}")
    return ",".join(parts)


def select_param(query: Select) -> str:
    columns = ["*"]
    columns.extend(f"{embed.name}:{embed.table}(*)" for embed in query.embeds)
    return ",".join(columns)


def parse_content_range(header: str | None) -> int | None:
    """Total from a ``Content-Range`` header such as ``0-24/120`` or ``*/0``."""

    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else None


def _default_client_factory(config: HostedBackendConfig) -> ResilientClient:
    resilience = replace(
        config.resilience,
        name="backend-rest",
        base_url=config.rest_url,
        default_headers={"apikey": config.anon_key, "Accept": "application/json"},
    )
    return ResilientClient(resilience)


class HostedRemoteStore:
    """Data API client.

    Mutations made through this store are echoed to local subscribers after the
    API confirms them. Changes made by other clients reach subscribers only
    through ``realtime``, which is started by the first subscription.
    """

    def __init__(
        self,
        config: HostedBackendConfig,
        *,
        access_token: TokenProvider | None = None,
        feed: ChangeFeed | None = None,
        realtime: RealtimeListener | None = None,
        client_factory: Callable[[HostedBackendConfig], ResilientClient] = (
            _default_client_factory
        ),
    ) -> None:
        self.config = config
        self._access_token = access_token
        self._feed = feed or ChangeFeed()
        self._realtime = realtime
        self._client = client_factory(config)

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    async def aclose(self) -> None:
        if self._realtime is not None:
            await self._realtime.aclose()
        await self._client.aclose()

    async def select(self, query: Select) -> QueryResult:
        params: list[tuple[str, str]] = [("select", select_param(query))]
        params.extend(filter_params(query.filters))
        if query.order:
            params.append(("order", order_param(query.order)))
        if query.offset:
            params.append(("offset", str(query.offset)))
        if query.limit is not None:
            params.append(("limit", str(query.limit)))
        prefer = "count=exact" if query.count else None
        response = await self._request("GET", query.table, params=params, prefer=prefer)
        rows = self._rows(response)
        count = parse_content_range(response.headers.get("Content-Range")) if query.count else None
        return QueryResult(rows=rows, count=count)

    async def insert(self, table: str, rows: Sequence[Row]) -> list[Row]:
        if not rows:
            return []
        response = await self._request(
            "POST", table, body=[_encode_row(row) for row in rows], prefer=_RETURN_ROWS
        )
        stored = self._rows(response)
        self._publish([ChangeEvent(table, ChangeType.INSERT, new=row) for row in stored])
        return stored

    async def update(self, table: str, values: Row, filters: Sequence[Filter]) -> list[Row]:
        response = await self._request(
            "PATCH",
            table,
            params=filter_params(filters),
            body=_encode_row(values),
            prefer=_RETURN_ROWS,
        )
        stored = self._rows(response)
        self._publish([ChangeEvent(table, ChangeType.UPDATE, new=row) for row in stored])
        return stored

    async def delete(self, table: str, filters: Sequence[Filter]) -> list[Row]:
        response = await self._request(
            "DELETE", table, params=filter_params(filters), prefer=_RETURN_ROWS
        )
        removed = self._rows(response)
        self._publish([ChangeEvent(table, ChangeType.DELETE, old=row) for row in removed])
        return removed

    async def upsert(self, table: str, rows: Sequence[Row], *, on_conflict: str) -> list[Row]:
        if not rows:
            return []
        response = await self._request(
            "POST",
            table,
            params=[("on_conflict", on_conflict)],
            body=[_encode_row(row) for row in rows],
            prefer=f"resolution=merge-duplicates,{_RETURN_ROWS}",
        )
        stored = self._rows(response)
        self._publish([ChangeEvent(table, ChangeType.UPDATE, new=row) for row in stored])
        return stored

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        where: Eq | None = None,
    ) -> Unsubscribe:
        if self._realtime is not None:
            self._realtime.ensure_running()
        return self._feed.subscribe(table, callback, where=where)

    async def _headers(self, prefer: str | None) -> dict[str, str]:
        token = (await self._access_token() if self._access_token else None) or self.config.anon_key
        headers = {"Authorization": f"Bearer {token}"}
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        body: object = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        url = f"/{table}"
        try:
            response = await self._client.request(
                method,
                url,
                params=httpx.QueryParams(params or []),
                json=body,
                headers=await self._headers(prefer),
            )
        except httpx.HTTPError as exc:
            log.warning("%s %s failed: %s", method, url, exc)
            raise DataError(f"Backend request failed: {exc}") from exc
        if response.is_error:
            raise self._error(response)
        return response

    def _error(self, response: httpx.Response) -> HostedAPIError:
        try:
            payload = RestErrorResponse.model_validate(response.json())
        except (json.JSONDecodeError, PydanticValidationError):
            message = response.text.strip() or response.reason_phrase
            return HostedAPIError(
                f"HTTP {response.status_code}: {message}", status_code=response.status_code
            )
        log.error("Backend error %s (%s): %s", response.status_code, payload.code, payload.message)
        return HostedAPIError(
            payload.describe(), status_code=response.status_code, code=payload.code
        )

    def _rows(self, response: httpx.Response) -> list[Row]:
        if not response.content:
            return []
        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise DataError("Backend returned a non-JSON body") from exc
        if isinstance(payload, dict):
            payload = [payload]
        if not isinstance(payload, list):
            raise DataError("Unexpected backend response payload")
        return [dict(row) for row in payload if isinstance(row, dict)]

    def _publish(self, events: list[ChangeEvent]) -> None:
        self._feed.publish_all(events)


__all__ = [
    "HostedAPIError",
    "HostedRemoteStore",
    "filter_params",
    "order_param",
    "parse_content_range",
    "select_param",
]
