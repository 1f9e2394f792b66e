"""Port for the remote relational store and its change feed."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from shiftdesk.domain.model import Row

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .query import Eq, Filter, QueryResult, Select


class ChangeType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """One row mutation as published by the store's change feed."""

    table: str
    type: ChangeType
    new: Row | None = None
    old: Row | None = None

    @property
    def record_id(self) -> str | None:
        for payload in (self.new, self.old):
            if payload and payload.get("id") is not None:
                return str(payload["id"])
        return None


ChangeCallback = Callable[[ChangeEvent], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class RemoteStore(Protocol):
    """Table-scoped query surface plus per-table change subscriptions.

    Every failure is raised as ``shiftdesk.domain.errors.DataError``. Change
    delivery is at-least-once and asynchronous with respect to the mutation that
    caused it; callers must call the returned ``Unsubscribe`` when done.
    """

    async def select(self, query: Select) -> QueryResult: ...

    async def insert(self, table: str, rows: Sequence[Row]) -> list[Row]: ...

    async def update(self, table: str, values: Row, filters: Sequence[Filter]) -> list[Row]: ...

    async def delete(self, table: str, filters: Sequence[Filter]) -> list[Row]: ...

    async def upsert(self, table: str, rows: Sequence[Row], *, on_conflict: str) -> list[Row]: ...

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        where: Eq | None = None,
    ) -> Unsubscribe: ...


__all__ = [
    "ChangeCallback",
    "ChangeEvent",
    "ChangeType",
    "RemoteStore",
    "Row",
    "Unsubscribe",
]
