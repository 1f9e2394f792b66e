"""Client-side view state for the ticket listing.

The listing loads every ticket once and then filters, sorts and paginates in
memory. Status edits are applied locally first and rolled back when the store
rejects them.
"""

from __future__ import annotations

import locale
import math
from dataclasses import dataclass, field
from datetime import datetime
from logging import getLogger
from typing import TYPE_CHECKING

from shiftdesk.config.listing import DEFAULT_VIEW_PAGE_SIZE
from shiftdesk.domain.model import Ticket, TicketCategory, TicketStatus
from shiftdesk.domain.optimistic import apply_optimistically
from shiftdesk.domain.tickets import (
    DEFAULT_SORT_COLUMN,
    TicketListRequest,
    TicketSortColumn,
    resolve_sort_column,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from shiftdesk.domain.tickets import TicketRepository

log = getLogger(__name__)

_TIMESTAMP_COLUMNS = frozenset(
    {
        TicketSortColumn.LAST_ACTIVITY_AT,
        TicketSortColumn.UPDATED_AT,
        TicketSortColumn.CREATED_AT,
    }
)
_TEXT_VALUES: dict[TicketSortColumn, Callable[[Ticket], str]] = {
    TicketSortColumn.EXTERNAL_ID: lambda ticket: ticket.external_id,
    TicketSortColumn.TITLE: lambda ticket: ticket.title,
    TicketSortColumn.ASSIGNEE: lambda ticket: ticket.assignee,
    TicketSortColumn.STATUS: lambda ticket: ticket.status.value,
    TicketSortColumn.CATEGORY: lambda ticket: ticket.category.value,
}


@dataclass(frozen=True, slots=True)
class TicketFilters:
    """Conjunction of the listing filters; an empty field does not filter."""

    statuses: frozenset[TicketStatus] = frozenset()
    categories: frozenset[TicketCategory] = frozenset()
    assignee: str = ""
    query: str = ""

    def matches(self, ticket: Ticket) -> bool:
        if self.statuses and ticket.status not in self.statuses:
            return False
        if self.categories and ticket.category not in self.categories:
            return False
        assignee = self.assignee.strip().casefold()
        if assignee and assignee not in ticket.assignee.casefold():
            return False
        query = self.query.strip().casefold()
        if query:
            haystacks = (ticket.external_id, ticket.title, ticket.notes or "")
            return any(query in value.casefold() for value in haystacks)
        return True


def _epoch_ms(value: datetime | None) -> int:
    if value is None:
        return 0
    return int(value.timestamp() * 1000)


def collation_key(text: str) -> tuple[str, str]:
    """Case-insensitive key in the current collation; case only breaks ties.

    Collation follows ``LC_COLLATE``, which the command line takes from the
    environment.
    """

    return (locale.strxfrm(text.casefold()), locale.strxfrm(text))


def _sort_key(column: TicketSortColumn) -> Callable[[Ticket], object]:
    if column in _TIMESTAMP_COLUMNS:
        attribute = {
            TicketSortColumn.LAST_ACTIVITY_AT: "last_activity_at",
            TicketSortColumn.UPDATED_AT: "updated_at",
            TicketSortColumn.CREATED_AT: "created_at",
        }[column]
        return lambda ticket: _epoch_ms(getattr(ticket, attribute))
    text = _TEXT_VALUES[column]
    return lambda ticket: collation_key(text(ticket))


def sort_tickets(
    tickets: Iterable[Ticket],
    column: TicketSortColumn | str | None = None,
    *,
    descending: bool = False,
) -> list[Ticket]:
    """Sort by one column.

    Timestamps compare by epoch milliseconds with a missing value counting as
    zero. Text columns, status and category compare their stored strings with
    ``collation_key``.
    """

    resolved = column if isinstance(column, TicketSortColumn) else resolve_sort_column(column)
    return sorted(tickets, key=_sort_key(resolved), reverse=descending)


def count_pages(total: int, page_size: int) -> int:
    if page_size < 1:
        raise ValueError("page_size must be at least 1")
    return max(1, math.ceil(total / page_size))


def clamp_page(page: int, pages: int) -> int:
    return min(max(1, page), max(1, pages))


@dataclass(frozen=True, slots=True)
class ListingStats:
    total: int
    active: int
    resolved: int


@dataclass(slots=True)
class TicketListView:
    repository: TicketRepository
    page_size: int = DEFAULT_VIEW_PAGE_SIZE
    filters: TicketFilters = field(default_factory=TicketFilters)
    sort_column: TicketSortColumn = DEFAULT_SORT_COLUMN
    descending: bool = True
    _page: int = field(default=1, init=False)
    _tickets: list[Ticket] = field(default_factory=list, init=False)

    async def load(self) -> None:
        self._tickets = await self.repository.list_all(TicketListRequest())
        self._page = clamp_page(self._page, self.page_count)
        log.debug("Loaded %s tickets into the listing", len(self._tickets))

    async def refresh(self) -> None:
        await self.load()

    @property
    def tickets(self) -> list[Ticket]:
        return list(self._tickets)

    @property
    def visible(self) -> list[Ticket]:
        """Every ticket passing the filters, in display order."""

        matching = [ticket for ticket in self._tickets if self.filters.matches(ticket)]
        return sort_tickets(matching, self.sort_column, descending=self.descending)

    @property
    def page_count(self) -> int:
        return count_pages(len(self.visible), self.page_size)

    @property
    def page(self) -> int:
        return clamp_page(self._page, self.page_count)

    def set_page(self, page: int) -> int:
        self._page = clamp_page(page, self.page_count)
        return self._page

    @property
    def rows(self) -> list[Ticket]:
        start = (self.page - 1) * self.page_size
        return self.visible[start : start + self.page_size]

    def set_filters(self, filters: TicketFilters) -> None:
        self.filters = filters
        self._page = 1

    def toggle_sort(self, column: TicketSortColumn | str) -> None:
        """Flip direction on the current column; a new column starts ascending."""

        resolved = resolve_sort_column(str(column))
        if resolved is self.sort_column:
            self.descending = not self.descending
        else:
            self.sort_column = resolved
            self.descending = False

    @property
    def stats(self) -> ListingStats:
        resolved = sum(1 for ticket in self._tickets if ticket.is_resolved)
        return ListingStats(
            total=len(self._tickets),
            active=len(self._tickets) - resolved,
            resolved=resolved,
        )

    async def change_status(self, ticket_id: str, status: TicketStatus) -> Ticket:
        """Show ``status`` immediately, then persist it; failures roll back and raise."""

        index = self._index_of(ticket_id)

        def capture() -> TicketStatus:
            return self._tickets[index].status

        def apply() -> None:
            self._replace(ticket_id, lambda ticket: ticket.with_status(status))

        def restore(previous: TicketStatus) -> None:
            self._replace(ticket_id, lambda ticket: ticket.with_status(previous))

        updated = await apply_optimistically(
            capture=capture,
            apply=apply,
            persist=lambda: self.repository.set_status(ticket_id, status),
            restore=restore,
            description=f"status of ticket {ticket_id}",
        )
        self._replace(ticket_id, lambda _ticket: updated)
        return updated

    def _index_of(self, ticket_id: str) -> int:
        for index, ticket in enumerate(self._tickets):
            if ticket.id == ticket_id:
                return index
        raise KeyError(ticket_id)

    def _replace(self, ticket_id: str, change: Callable[[Ticket], Ticket]) -> None:
        for index, ticket in enumerate(self._tickets):
            if ticket.id == ticket_id:
                self._tickets[index] = change(ticket)
                return


__all__ = [
    "ListingStats",
    "TicketFilters",
    "TicketListView",
    "clamp_page",
    "count_pages",
    "sort_tickets",
]
