"""Clock abstraction and shift business-day rules."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from shiftdesk.config.sync import DEFAULT_DAY_START_HOUR

if TYPE_CHECKING:
    from shiftdesk.domain.model import Shift


class Clock(Protocol):
    def __call__(self) -> datetime: ...


def utcnow() -> datetime:
    return datetime.now(UTC)


def _to_local(value: datetime) -> datetime:
    # naive values are taken to be local wall-clock time already
    if value.tzinfo is None:
        return value
    return value.astimezone()


def current_shift_date(
    now: datetime | None = None,
    *,
    day_start_hour: int = DEFAULT_DAY_START_HOUR,
) -> date:
    """Return the business day a shift starting at ``now`` belongs to.

    Overnight work before ``day_start_hour`` (local time) is attributed to the
    previous calendar day.
    """

    local = _to_local(now) if now is not None else datetime.now().astimezone()
    if local.hour < day_start_hour:
        return local.date() - timedelta(days=1)
    return local.date()


def elapsed(start: datetime, end: datetime) -> timedelta:
    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    if end.tzinfo is None:
        end = end.replace(tzinfo=UTC)
    return end - start


def format_elapsed(delta: timedelta) -> str:
    """Render ``delta`` as ``"{H}h {M}m"``, truncating toward zero at the minute."""

    total_ms = int(delta / timedelta(milliseconds=1))
    sign = "-" if total_ms < 0 else ""
    total_ms = abs(total_ms)
    hours = total_ms // 3_600_000
    minutes = (total_ms % 3_600_000) // 60_000
    return f"{sign}{hours}h {minutes}m"


def format_duration(shift: Shift, *, clock: Clock = utcnow) -> str:
    """Duration of ``shift`` up to its end, or up to now while it is running."""

    end = shift.ended_at or clock()
    return format_elapsed(elapsed(shift.started_at, end))


__all__ = [
    "Clock",
    "current_shift_date",
    "elapsed",
    "format_duration",
    "format_elapsed",
    "utcnow",
]
