"""Helpers for reading store rows into domain values."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

type Row = dict[str, object]


def parse_timestamp(value: object) -> datetime | None:
    """Accept a datetime or an ISO-8601 string and return an aware UTC datetime."""

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        normalized = value.strip()
        if not normalized:
            return None
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        parsed = datetime.fromisoformat(normalized)
    else:
        raise TypeError(f"Expected timestamp, got {type(value).__name__}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def require_timestamp(row: Mapping[str, object], key: str) -> datetime:
    parsed = parse_timestamp(row.get(key))
    if parsed is None:
        raise ValueError(f"Row is missing required timestamp '{key}'")
    return parsed


def parse_date(value: object) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise TypeError(f"Expected date, got {type(value).__name__}")


def require_str(row: Mapping[str, object], key: str) -> str:
    value = row.get(key)
    if value is None:
        raise ValueError(f"Row is missing required field '{key}'")
    return str(value)


def optional_str(row: Mapping[str, object], key: str) -> str | None:
    value = row.get(key)
    return None if value is None else str(value)


def require_stamped_when(
    flag: bool, stamp: datetime | None, *, flag_name: str, stamp_name: str
) -> None:
    """Reject rows where ``stamp_name`` is set without ``flag_name`` holding, or the reverse."""

    if flag != (stamp is not None):
        state = "set" if stamp is not None else "missing"
        raise ValueError(f"'{stamp_name}' is {state} but {flag_name} is {flag}")


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()
