from __future__ import annotations

import asyncio

import pytest

from shiftdesk.adapters.changefeed import ChangeFeed
from shiftdesk.domain.ports.query import Eq
from shiftdesk.domain.ports.store import ChangeEvent, ChangeType


def _event(table: str, shift_id: str, change: ChangeType = ChangeType.INSERT) -> ChangeEvent:
    row = {"id": f"{table}-{shift_id}", "shift_id": shift_id}
    if change is ChangeType.DELETE:
        return ChangeEvent(table, change, old=row)
    return ChangeEvent(table, change, new=row)


def test_delivers_inline_without_running_loop() -> None:
    feed = ChangeFeed()
    received: list[ChangeEvent] = []
    feed.subscribe("shift_tickets", received.append)

    feed.publish(_event("shift_tickets", "s1"))
    feed.publish(_event("tickets", "s1"))

    assert [event.table for event in received] == ["shift_tickets"]


def test_where_matches_new_or_old_payload() -> None:
    feed = ChangeFeed()
    received: list[ChangeType] = []
    feed.subscribe(
        "shift_tickets", lambda event: received.append(event.type), where=Eq("shift_id", "s1")
    )

    feed.publish_all(
        [
            _event("shift_tickets", "s1"),
            _event("shift_tickets", "s2"),
            _event("shift_tickets", "s1", ChangeType.DELETE),
        ]
    )

    assert received == [ChangeType.INSERT, ChangeType.DELETE]


def test_delivery_is_deferred_inside_event_loop() -> None:
    feed = ChangeFeed()
    received: list[ChangeEvent] = []
    feed.subscribe("tickets", received.append)

    async def scenario() -> tuple[int, int]:
        feed.publish(_event("tickets", "s1"))
        before = len(received)
        await asyncio.sleep(0)
        return before, len(received)

    assert asyncio.run(scenario()) == (0, 1)


def test_unsubscribed_callback_is_not_called_for_pending_events() -> None:
    feed = ChangeFeed()
    received: list[ChangeEvent] = []
    unsubscribe = feed.subscribe("tickets", received.append)

    async def scenario() -> None:
        feed.publish(_event("tickets", "s1"))
        unsubscribe()
        await asyncio.sleep(0)

    asyncio.run(scenario())

    assert received == []
    assert feed.subscriber_count == 0


def test_failing_subscriber_is_logged_and_isolated(caplog: pytest.LogCaptureFixture) -> None:
    feed = ChangeFeed()
    received: list[ChangeEvent] = []

    def broken(_event: ChangeEvent) -> None:
        raise RuntimeError("boom")

    feed.subscribe("tickets", broken)
    feed.subscribe("tickets", received.append)

    feed.publish(_event("tickets", "s1"))

    assert len(received) == 1
    assert "Change subscriber #1 failed" in caplog.text
