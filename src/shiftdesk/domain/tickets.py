"""Ticket repository: listing, CRUD, bulk upsert and change subscription."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum, StrEnum, auto
from logging import getLogger
from typing import TYPE_CHECKING, Final

from shiftdesk.config.listing import DEFAULT_REPOSITORY_PAGE_SIZE
from shiftdesk.domain.changes import parse_row, parse_rows, single_row, typed_callback
from shiftdesk.domain.clock import Clock, utcnow
from shiftdesk.domain.errors import ValidationError
from shiftdesk.domain.model import Row, Ticket, TicketCategory, TicketStatus
from shiftdesk.domain.ports.query import AnyContains, Contains, Eq, OrderBy, Select

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from datetime import datetime

    from shiftdesk.domain.changes import RecordChange
    from shiftdesk.domain.ports.query import Filter
    from shiftdesk.domain.ports.store import RemoteStore, Unsubscribe

log = getLogger(__name__)

TABLE: Final[str] = Ticket.TABLE
CONFLICT_COLUMN: Final[str] = "external_id"
TEXT_SEARCH_COLUMNS: Final[tuple[str, ...]] = ("external_id", "ticket_name", "notes")


class TicketSortColumn(StrEnum):
    """Store columns a ticket listing may be ordered by."""

    EXTERNAL_ID = "external_id"
    TITLE = "ticket_name"
    ASSIGNEE = "assignee"
    STATUS = "status"
    CATEGORY = "cti"
    LAST_ACTIVITY_AT = "last_activity_at"
    UPDATED_AT = "updated_at"
    CREATED_AT = "created_at"


DEFAULT_SORT_COLUMN: Final[TicketSortColumn] = TicketSortColumn.LAST_ACTIVITY_AT


def resolve_sort_column(value: str | None) -> TicketSortColumn:
    """Map a requested sort column onto the allow-list, falling back to last activity."""

    if value is None:
        return DEFAULT_SORT_COLUMN
    try:
        return TicketSortColumn(value)
    except ValueError:
        log.debug("Ignoring unsupported ticket sort column %r", value)
        return DEFAULT_SORT_COLUMN


class _Unset(Enum):
    UNSET = auto()


UNSET: Final = _Unset.UNSET


@dataclass(frozen=True, slots=True)
class TicketListRequest:
    """Server-side filters, paging and ordering for ``TicketRepository.list``.

    ``status`` / ``category`` of ``None`` mean "all". ``page`` is 1-based.
    """

    query: str = ""
    status: TicketStatus | None = None
    category: TicketCategory | None = None
    assignee: str = ""
    page: int = 1
    page_size: int = DEFAULT_REPOSITORY_PAGE_SIZE
    sort_by: str | None = None
    descending: bool = True

    def filters(self) -> tuple[Filter, ...]:
        filters: list[Filter] = []
        if self.status is not None:
            filters.append(Eq("status", self.status.value))
        if self.category is not None:
            filters.append(Eq("cti", self.category.value))
        assignee = self.assignee.strip()
        if assignee:
            filters.append(Contains("assignee", assignee))
        text = self.query.strip()
        if text:
            filters.append(AnyContains(TEXT_SEARCH_COLUMNS, text))
        return tuple(filters)

    def to_select(self) -> Select:
        if self.page_size < 1:
            raise ValidationError("page_size must be at least 1")
        offset = max(0, (self.page - 1) * self.page_size)
        return Select(
            table=TABLE,
            filters=self.filters(),
            order=(OrderBy(resolve_sort_column(self.sort_by).value, descending=self.descending),),
            offset=offset,
            limit=self.page_size,
            count=True,
        )


@dataclass(frozen=True, slots=True)
class TicketPage:
    tickets: list[Ticket]
    total: int
    page: int
    page_size: int

    @property
    def page_count(self) -> int:
        return max(1, math.ceil(self.total / self.page_size))


@dataclass(frozen=True, slots=True, kw_only=True)
class TicketDraft:
    """Input for creating (or bulk upserting) a ticket."""

    external_id: str
    title: str
    assignee: str
    category: TicketCategory
    status: TicketStatus = TicketStatus.ASSIGNED
    notes: str | None = None
    last_activity_at: datetime | None = None

    def validate(self) -> None:
        missing = [
            name
            for name, value in (
                ("external_id", self.external_id),
                ("title", self.title),
                ("assignee", self.assignee),
            )
            if not value.strip()
        ]
        if missing:
            raise ValidationError(f"Missing required ticket fields: {', '.join(missing)}")

    def to_row(self, *, now: datetime) -> Row:
        notes = (self.notes or "").strip()
        return {
            "external_id": self.external_id.strip(),
            "ticket_name": self.title.strip(),
            "status": self.status.value,
            "assignee": self.assignee.strip(),
            "cti": self.category.value,
            "notes": notes or None,
            "last_activity_at": self.last_activity_at or now,
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class TicketPatch:
    """Partial ticket update; fields left ``UNSET`` are not sent."""

    title: str | _Unset = UNSET
    status: TicketStatus | _Unset = UNSET
    assignee: str | _Unset = UNSET
    category: TicketCategory | _Unset = UNSET
    notes: str | None | _Unset = UNSET
    last_activity_at: datetime | _Unset = UNSET
    external_id: str | _Unset = UNSET

    def to_row(self, *, now: datetime) -> Row:
        row: Row = {}
        if not isinstance(self.external_id, _Unset):
            row["external_id"] = self.external_id
        if not isinstance(self.title, _Unset):
            row["ticket_name"] = self.title
        if not isinstance(self.status, _Unset):
            row["status"] = self.status.value
        if not isinstance(self.assignee, _Unset):
            row["assignee"] = self.assignee
        if not isinstance(self.category, _Unset):
            row["cti"] = self.category.value
        if not isinstance(self.notes, _Unset):
            row["notes"] = self.notes or None
        row["last_activity_at"] = (
            now if isinstance(self.last_activity_at, _Unset) else self.last_activity_at
        )
        return row


@dataclass(slots=True)
class TicketRepository:
    store: RemoteStore
    clock: Clock = field(default=utcnow)

    async def list(self, request: TicketListRequest | None = None) -> TicketPage:
        effective = request or TicketListRequest()
        result = await self.store.select(effective.to_select())
        tickets = parse_rows(Ticket.from_row, TABLE, result.rows)
        total = result.count if result.count is not None else len(tickets)
        return TicketPage(
            tickets=tickets,
            total=total,
            page=max(1, effective.page),
            page_size=effective.page_size,
        )

    async def list_all(self, request: TicketListRequest | None = None) -> list[Ticket]:
        """Walk every page of ``request`` and return the concatenated tickets."""

        base = request or TicketListRequest()
        collected: list[Ticket] = []
        page_number = 1
        while True:
            page = await self.list(replace(base, page=page_number))
            collected.extend(page.tickets)
            if not page.tickets or page_number >= page.page_count:
                return collected
            page_number += 1

    async def get(self, ticket_id: str) -> Ticket | None:
        result = await self.store.select(
            Select(table=TABLE, filters=(Eq("id", ticket_id),), limit=1)
        )
        if not result.rows:
            return None
        return parse_row(Ticket.from_row, TABLE, result.rows[0])

    async def create(self, draft: TicketDraft) -> Ticket:
        draft.validate()
        rows = await self.store.insert(TABLE, [draft.to_row(now=self.clock())])
        ticket = parse_row(Ticket.from_row, TABLE, single_row(TABLE, rows, action="insert"))
        log.info("Created ticket %s (%s)", ticket.external_id, ticket.id)
        return ticket

    async def update(self, ticket_id: str, patch: TicketPatch) -> Ticket:
        rows = await self.store.update(
            TABLE, patch.to_row(now=self.clock()), [Eq("id", ticket_id)]
        )
        return parse_row(Ticket.from_row, TABLE, single_row(TABLE, rows, action="update"))

    async def set_status(self, ticket_id: str, status: TicketStatus) -> Ticket:
        return await self.update(ticket_id, TicketPatch(status=status))

    async def delete(self, ticket_id: str) -> None:
        await self.store.delete(TABLE, [Eq("id", ticket_id)])

    async def upsert_batch(self, drafts: Iterable[TicketDraft]) -> int:
        """Insert or update tickets keyed by external id; returns rows written."""

        now = self.clock()
        rows: list[Row] = []
        for draft in drafts:
            draft.validate()
            rows.append(draft.to_row(now=now))
        if not rows:
            return 0
        written = await self.store.upsert(TABLE, rows, on_conflict=CONFLICT_COLUMN)
        log.info("Upserted %s tickets", len(written))
        return len(written)

    def subscribe(self, on_change: Callable[[RecordChange[Ticket]], None]) -> Unsubscribe:
        return self.store.subscribe(TABLE, typed_callback(Ticket.from_row, TABLE, on_change))


__all__ = [
    "DEFAULT_SORT_COLUMN",
    "UNSET",
    "TicketDraft",
    "TicketListRequest",
    "TicketPage",
    "TicketPatch",
    "TicketRepository",
    "TicketSortColumn",
    "resolve_sort_column",
]
