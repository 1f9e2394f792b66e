from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from shiftdesk.domain.errors import ValidationError
from shiftdesk.domain.model import TicketCategory, TicketStatus
from shiftdesk.domain.ports.store import ChangeType
from shiftdesk.domain.tickets import (
    DEFAULT_SORT_COLUMN,
    TicketListRequest,
    TicketPatch,
    TicketSortColumn,
    resolve_sort_column,
)
from tests.helpers.tickets import make_draft

if TYPE_CHECKING:
    from shiftdesk.domain.changes import RecordChange
    from shiftdesk.domain.model import Ticket
    from shiftdesk.domain.tickets import TicketRepository
    from tests.helpers.tickets import FixedClock

BASE = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)


async def _seed(tickets: TicketRepository) -> None:
    await tickets.create(
        make_draft(
            "INC-1",
            title="Printer jam",
            category=TicketCategory.HARDWARE,
            last_activity_at=BASE,
        )
    )
    await tickets.create(
        make_draft(
            "INC-2",
            title="VPN drops",
            assignee="lee",
            notes="Seen on 50% of laptops",
            last_activity_at=BASE + timedelta(hours=2),
        )
    )
    await tickets.create(
        make_draft(
            "INC-3",
            title="Switch reboot",
            assignee="Dana K",
            status=TicketStatus.RESOLVED,
            last_activity_at=BASE + timedelta(hours=1),
        )
    )


def test_create_stamps_store_fields(tickets: TicketRepository, clock: FixedClock) -> None:
    ticket = asyncio.run(tickets.create(make_draft(notes="  ")))

    assert ticket.id
    assert ticket.created_at == clock.now
    assert ticket.last_activity_at == clock.now
    assert ticket.notes is None
    assert ticket.status is TicketStatus.ASSIGNED


def test_create_rejects_missing_fields(tickets: TicketRepository) -> None:
    with pytest.raises(ValidationError) as exc:
        asyncio.run(tickets.create(make_draft(title=" ", assignee="")))

    assert "title" in str(exc.value)
    assert "assignee" in str(exc.value)
    assert asyncio.run(tickets.list()).total == 0


def test_list_defaults_to_last_activity_descending(tickets: TicketRepository) -> None:
    async def scenario() -> list[str]:
        await _seed(tickets)
        page = await tickets.list()
        return [ticket.external_id for ticket in page.tickets]

    assert asyncio.run(scenario()) == ["INC-2", "INC-3", "INC-1"]


def test_list_falls_back_for_unknown_sort_column(tickets: TicketRepository) -> None:
    async def scenario() -> list[str]:
        await _seed(tickets)
        page = await tickets.list(TicketListRequest(sort_by="password; drop table"))
        return [ticket.external_id for ticket in page.tickets]

    assert asyncio.run(scenario()) == ["INC-2", "INC-3", "INC-1"]
    assert resolve_sort_column("nope") is DEFAULT_SORT_COLUMN
    assert resolve_sort_column("ticket_name") is TicketSortColumn.TITLE


def test_list_combines_filters(tickets: TicketRepository) -> None:
    async def scenario() -> tuple[list[str], list[str], list[str]]:
        await _seed(tickets)
        by_assignee = await tickets.list(
            TicketListRequest(assignee="DANA", sort_by="external_id", descending=False)
        )
        by_status = await tickets.list(
            TicketListRequest(assignee="dana", status=TicketStatus.RESOLVED)
        )
        by_category = await tickets.list(TicketListRequest(category=TicketCategory.HARDWARE))
        return (
            [ticket.external_id for ticket in by_assignee.tickets],
            [ticket.external_id for ticket in by_status.tickets],
            [ticket.external_id for ticket in by_category.tickets],
        )

    by_assignee, by_status, by_category = asyncio.run(scenario())

    assert by_assignee == ["INC-1", "INC-3"]
    assert by_status == ["INC-3"]
    assert by_category == ["INC-1"]


def test_text_search_matches_id_title_and_notes(tickets: TicketRepository) -> None:
    async def scenario(query: str) -> list[str]:
        page = await tickets.list(
            TicketListRequest(query=query, sort_by="external_id", descending=False)
        )
        return [ticket.external_id for ticket in page.tickets]

    asyncio.run(_seed(tickets))

    assert asyncio.run(scenario("inc-1")) == ["INC-1"]
    assert asyncio.run(scenario("switch")) == ["INC-3"]
    assert asyncio.run(scenario("50%")) == ["INC-2"]
    assert asyncio.run(scenario("5_%")) == []


def test_list_pages_with_total_count(tickets: TicketRepository) -> None:
    async def scenario() -> tuple[list[str], int, int]:
        await _seed(tickets)
        page = await tickets.list(TicketListRequest(page=2, page_size=2))
        return [ticket.external_id for ticket in page.tickets], page.total, page.page_count

    ids, total, page_count = asyncio.run(scenario())

    assert ids == ["INC-1"]
    assert total == 3
    assert page_count == 2


def test_list_all_walks_every_page(tickets: TicketRepository) -> None:
    async def scenario() -> list[Ticket]:
        await _seed(tickets)
        return await tickets.list_all(TicketListRequest(page_size=1))

    assert len(asyncio.run(scenario())) == 3


def test_update_touches_activity_and_updated_at(
    tickets: TicketRepository, clock: FixedClock
) -> None:
    async def scenario() -> Ticket:
        created = await tickets.create(make_draft(last_activity_at=BASE))
        clock.advance(minutes=10)
        return await tickets.update(created.id, TicketPatch(notes="Replaced cable"))

    updated = asyncio.run(scenario())

    assert updated.notes == "Replaced cable"
    assert updated.last_activity_at == clock.now
    assert updated.updated_at == clock.now
    assert updated.title == "Switch port flapping"


def test_upsert_batch_is_keyed_by_external_id(tickets: TicketRepository) -> None:
    async def scenario() -> tuple[int, int, list[Ticket]]:
        first = await tickets.upsert_batch([make_draft("INC-1"), make_draft("INC-2")])
        second = await tickets.upsert_batch(
            [make_draft("INC-1", status=TicketStatus.PENDING), make_draft("INC-2")]
        )
        return first, second, await tickets.list_all()

    first, second, stored = asyncio.run(scenario())

    assert (first, second) == (2, 2)
    assert len(stored) == 2
    statuses = {ticket.external_id: ticket.status for ticket in stored}
    assert statuses["INC-1"] is TicketStatus.PENDING


def test_upsert_batch_validates_every_draft(tickets: TicketRepository) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(tickets.upsert_batch([make_draft("INC-1"), make_draft("")]))

    assert asyncio.run(tickets.list()).total == 0


def test_get_returns_none_for_unknown_id(tickets: TicketRepository) -> None:
    assert asyncio.run(tickets.get("missing")) is None


def test_subscribe_delivers_typed_changes(tickets: TicketRepository) -> None:
    received: list[RecordChange[Ticket]] = []

    async def scenario() -> None:
        unsubscribe = tickets.subscribe(received.append)
        created = await tickets.create(make_draft())
        await tickets.set_status(created.id, TicketStatus.RESOLVED)
        await asyncio.sleep(0)
        unsubscribe()
        await tickets.delete(created.id)
        await asyncio.sleep(0)

    asyncio.run(scenario())

    assert [change.type for change in received] == [ChangeType.INSERT, ChangeType.UPDATE]
    assert received[1].new is not None
    assert received[1].new.is_resolved
