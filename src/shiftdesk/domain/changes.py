"""Typed change notifications and row parsing shared by the repositories."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from shiftdesk.domain.errors import DataError
from shiftdesk.domain.ports.store import ChangeEvent, ChangeType

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from shiftdesk.domain.model import Row

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RecordChange[T]:
    """A change feed event with the new payload parsed into a domain record.

    ``old`` stays a raw row: stores commonly publish only the primary key for
    deletes.
    """

    type: ChangeType
    new: T | None
    old: Row | None

    @property
    def old_id(self) -> str | None:
        if self.old and self.old.get("id") is not None:
            return str(self.old["id"])
        return None


def parse_row[T](
    parser: Callable[[Mapping[str, object]], T],
    table: str,
    row: Mapping[str, object],
) -> T:
    try:
        return parser(row)
    except (KeyError, TypeError, ValueError) as exc:
        raise DataError(f"Invalid {table} row: {exc}") from exc


def parse_rows[T](
    parser: Callable[[Mapping[str, object]], T],
    table: str,
    rows: Iterable[Mapping[str, object]],
) -> list[T]:
    return [parse_row(parser, table, row) for row in rows]


def single_row(table: str, rows: list[Row], *, action: str) -> Row:
    """Return the only row a single-record mutation produced."""

    if len(rows) != 1:
        raise DataError(f"{action} on {table} returned {len(rows)} rows, expected exactly one")
    return rows[0]


def typed_callback[T](
    parser: Callable[[Mapping[str, object]], T],
    table: str,
    on_change: Callable[[RecordChange[T]], None],
) -> Callable[[ChangeEvent], None]:
    """Adapt a raw change-feed callback into one receiving ``RecordChange``."""

    def _deliver(event: ChangeEvent) -> None:
        new: T | None = None
        if event.new is not None and event.type is not ChangeType.DELETE:
            try:
                new = parser(event.new)
            except (KeyError, TypeError, ValueError):
                log.warning("Dropping malformed %s change payload: %s", table, event.new)
                return
        on_change(RecordChange(type=event.type, new=new, old=event.old))

    return _deliver


__all__ = ["RecordChange", "parse_row", "parse_rows", "single_row", "typed_callback"]
