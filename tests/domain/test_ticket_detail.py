from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from shiftdesk.domain.errors import ValidationError
from shiftdesk.domain.model import TicketStatus
from shiftdesk.domain.ticket_detail import ActivityKind, TicketDetailView
from shiftdesk.domain.tickets import TicketPatch
from tests.helpers.tickets import make_draft

if TYPE_CHECKING:
    from shiftdesk.domain.comments import CommentRepository
    from shiftdesk.domain.tickets import TicketRepository
    from tests.helpers.tickets import FixedClock

AUTHOR = "dana@example.com"


def _view(
    ticket_id: str, tickets: TicketRepository, comments: CommentRepository, clock: FixedClock
) -> TicketDetailView:
    return TicketDetailView(
        ticket_id, tickets=tickets, comments=comments, author=AUTHOR, clock=clock
    )


def test_unknown_ticket_is_not_found(
    tickets: TicketRepository, comments: CommentRepository, clock: FixedClock
) -> None:
    view = _view("missing", tickets, comments, clock)

    assert asyncio.run(view.load()) is None
    assert view.not_found
    with pytest.raises(ValidationError):
        asyncio.run(view.post_comment("hello"))


def test_posted_comments_arrive_through_subscription(
    tickets: TicketRepository, comments: CommentRepository, clock: FixedClock
) -> None:
    async def scenario() -> tuple[TicketDetailView, list[str]]:
        ticket = await tickets.create(make_draft())
        await comments.create(ticket.id, "lee@example.com", "older note")
        view = _view(ticket.id, tickets, comments, clock)
        await view.load()
        clock.advance(minutes=1)
        posted = await view.post_comment("checked the cabling")
        await asyncio.sleep(0)
        after_post = [comment.content for comment in view.comments]
        await comments.update(posted.id, "checked the cabling twice")
        await asyncio.sleep(0)
        view.close()
        await comments.create(ticket.id, "lee@example.com", "after close")
        await asyncio.sleep(0)
        return view, after_post

    view, after_post = asyncio.run(scenario())

    assert after_post == ["checked the cabling", "older note"]
    assert [comment.content for comment in view.comments] == [
        "checked the cabling twice",
        "older note",
    ]


def test_deleted_comment_leaves_thread(
    tickets: TicketRepository, comments: CommentRepository, clock: FixedClock
) -> None:
    async def scenario() -> TicketDetailView:
        ticket = await tickets.create(make_draft())
        comment = await comments.create(ticket.id, AUTHOR, "to be removed")
        view = _view(ticket.id, tickets, comments, clock)
        await view.load()
        await comments.delete(comment.id)
        await asyncio.sleep(0)
        return view

    assert asyncio.run(scenario()).comments == []


def test_blank_comment_is_rejected(
    tickets: TicketRepository, comments: CommentRepository, clock: FixedClock
) -> None:
    async def scenario() -> None:
        ticket = await tickets.create(make_draft())
        view = _view(ticket.id, tickets, comments, clock)
        await view.load()
        await view.post_comment("   ")

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_activity_feed_is_newest_first(
    tickets: TicketRepository, comments: CommentRepository, clock: FixedClock
) -> None:
    async def scenario() -> TicketDetailView:
        ticket = await tickets.create(make_draft())
        view = _view(ticket.id, tickets, comments, clock)
        await view.load()
        clock.advance(minutes=1)
        await view.post_comment("looking into it")
        await asyncio.sleep(0)
        clock.advance(minutes=1)
        await view.escalate()
        clock.advance(minutes=1)
        await view.save(TicketPatch(notes="vendor case opened"))
        return view

    view = asyncio.run(scenario())

    assert [activity.kind for activity in view.activities] == [
        ActivityKind.UPDATED,
        ActivityKind.UPDATED,
        ActivityKind.COMMENT,
        ActivityKind.CREATED,
    ]
    assert view.ticket is not None
    assert view.ticket.status is TicketStatus.ESCALATED
    assert view.ticket.notes == "vendor case opened"


def test_mark_resolved(
    tickets: TicketRepository, comments: CommentRepository, clock: FixedClock
) -> None:
    async def scenario() -> TicketStatus:
        ticket = await tickets.create(make_draft())
        view = _view(ticket.id, tickets, comments, clock)
        await view.load()
        resolved = await view.mark_resolved()
        return resolved.status

    assert asyncio.run(scenario()) is TicketStatus.RESOLVED
