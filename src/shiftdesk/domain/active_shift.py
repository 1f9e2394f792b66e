"""Reconciliation core for a user's active shift.

``ActiveShiftSession`` owns the in-memory view of one user's shift and its
ticket links. Commands from the view and notifications from the two change
feeds (links of the current shift, all tickets) are turned into messages on a
single queue and handled one at a time by a worker task, so no two handlers
ever interleave.

Link completion is kept in step with ticket status by a debounced scan. The
scan only writes links that disagree with their ticket; the write echoes back
as a link notification, the re-fetched list equals the local one and nothing
is rescheduled, which makes the scan a fixed point.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import itertools
from dataclasses import dataclass, replace
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Any

from shiftdesk.config.sync import SyncConfig
from shiftdesk.domain.clock import format_duration, utcnow
from shiftdesk.domain.errors import DataError, ValidationError
from shiftdesk.domain.optimistic import apply_optimistically
from shiftdesk.domain.ports.store import ChangeType

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime
    from types import TracebackType

    from shiftdesk.domain.changes import RecordChange
    from shiftdesk.domain.clock import Clock
    from shiftdesk.domain.model import Shift, ShiftTicket, Ticket
    from shiftdesk.domain.ports.store import Unsubscribe
    from shiftdesk.domain.shifts import ShiftRepository
    from shiftdesk.domain.tickets import TicketRepository

log = getLogger(__name__)


class ShiftPhase(StrEnum):
    NO_ACTIVE_SHIFT = "no_active_shift"
    ACTIVE = "active"


def completion_rate(completed: int, total: int) -> int:
    """Whole percentage of completed links, rounding halves up; 0 for no links."""

    if total <= 0:
        return 0
    return (completed * 200 + total) // (2 * total)


@dataclass(frozen=True, slots=True)
class ShiftSnapshot:
    """Read model handed to listeners. ``ended_shift`` is the shift ended last."""

    shift: Shift | None
    links: tuple[ShiftTicket, ...]
    duration: str | None = None
    ended_shift: Shift | None = None

    @property
    def phase(self) -> ShiftPhase:
        return ShiftPhase.NO_ACTIVE_SHIFT if self.shift is None else ShiftPhase.ACTIVE

    @property
    def total_count(self) -> int:
        return len(self.links)

    @property
    def completed_count(self) -> int:
        return sum(1 for link in self.links if link.completed)

    @property
    def completion_rate(self) -> int:
        return completion_rate(self.completed_count, self.total_count)


type SnapshotListener = Callable[[ShiftSnapshot], None]
type LinkConfirmation = Callable[[ShiftTicket], bool | Awaitable[bool]]


@dataclass(frozen=True, slots=True)
class _Command:
    name: str
    run: Callable[[], Awaitable[Any]]
    future: asyncio.Future[Any]


@dataclass(frozen=True, slots=True)
class _Refresh:
    epoch: int


@dataclass(frozen=True, slots=True)
class _LinkRemoved:
    epoch: int
    link_id: str


@dataclass(frozen=True, slots=True)
class _TicketChanged:
    epoch: int
    ticket_id: str


@dataclass(frozen=True, slots=True)
class _Reconcile:
    epoch: int


type _Message = _Command | _Refresh | _LinkRemoved | _TicketChanged | _Reconcile


class ActiveShiftSession:
    """Live, self-reconciling state of one user's active shift.

    Use as an async context manager, or call ``open()`` and ``close()``. Every
    public coroutine is executed on the session's worker; listeners receive a
    fresh ``ShiftSnapshot`` after each state change and on every duration tick.
    """

    def __init__(
        self,
        *,
        user_id: str,
        shifts: ShiftRepository,
        tickets: TicketRepository,
        clock: Clock = utcnow,
        config: SyncConfig | None = None,
    ) -> None:
        self.user_id = user_id
        self._shifts = shifts
        self._tickets = tickets
        self._clock = clock
        self._config = config or SyncConfig()

        self._shift: Shift | None = None
        self._ended_shift: Shift | None = None
        self._links: list[ShiftTicket] = []
        self._epoch = 0
        self._alive = False
        self._refresh_queued = False

        self._queue: asyncio.Queue[_Message] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._ticker: asyncio.Task[None] | None = None
        self._reconcile_handle: asyncio.TimerHandle | None = None
        self._unsubscribe_tickets: Unsubscribe | None = None
        self._unsubscribe_links: Unsubscribe | None = None
        self._listeners: dict[int, SnapshotListener] = {}
        self._listener_ids = itertools.count(1)

    # lifecycle

    async def open(self) -> ShiftSnapshot:
        if self._alive:
            raise RuntimeError("Active shift session is already open")
        self._alive = True
        self._worker = asyncio.create_task(self._work(), name=f"active-shift:{self.user_id}")
        self._ticker = asyncio.create_task(self._tick(), name=f"shift-duration:{self.user_id}")
        self._unsubscribe_tickets = self._tickets.subscribe(self._on_ticket_change)
        return await self.load()

    async def close(self) -> None:
        """Tear down subscriptions, timers and tasks; pending commands are cancelled."""

        if not self._alive:
            return
        self._alive = False
        self._epoch += 1
        self._cancel_reconcile()
        self._drop_link_subscription()
        if self._unsubscribe_tickets is not None:
            self._unsubscribe_tickets()
            self._unsubscribe_tickets = None
        for task in (self._ticker, self._worker):
            if task is None:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._ticker = None
        self._worker = None
        while not self._queue.empty():
            message = self._queue.get_nowait()
            if isinstance(message, _Command):
                message.future.cancel()
            self._queue.task_done()
        self._listeners.clear()
        log.debug("Closed active shift session for %s", self.user_id)

    async def __aenter__(self) -> ActiveShiftSession:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._alive

    # read model

    @property
    def snapshot(self) -> ShiftSnapshot:
        timed = self._shift or self._ended_shift
        return ShiftSnapshot(
            shift=self._shift,
            links=tuple(self._links),
            duration=format_duration(timed, clock=self._clock) if timed else None,
            ended_shift=self._ended_shift if self._shift is None else None,
        )

    def add_listener(self, listener: SnapshotListener) -> Unsubscribe:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = listener

        def remove() -> None:
            self._listeners.pop(listener_id, None)

        return remove

    # commands

    async def load(self) -> ShiftSnapshot:
        return await self._submit("load", self._load)

    async def refresh(self) -> ShiftSnapshot:
        async def run() -> ShiftSnapshot:
            await self._refresh()
            return self.snapshot

        return await self._submit("refresh", run)

    async def start(self, notes: str | None = None) -> Shift:
        return await self._submit("start", lambda: self._start(notes))

    async def end(self, notes: str | None = None) -> Shift:
        return await self._submit("end", lambda: self._end(notes))

    async def toggle_complete(self, link_id: str) -> ShiftTicket:
        return await self._submit("toggle_complete", lambda: self._toggle(link_id))

    async def add_link(
        self, ticket_id: str, priority: int = 0, notes: str | None = None
    ) -> ShiftTicket:
        async def run() -> ShiftTicket:
            shift = self._require_shift()
            return await self._shifts.add_link(shift.id, ticket_id, priority, notes)

        return await self._submit("add_link", run)

    async def set_priority(self, link_id: str, priority: int) -> ShiftTicket:
        async def run() -> ShiftTicket:
            self._require_link(link_id)
            return await self._shifts.set_priority(link_id, priority)

        return await self._submit("set_priority", run)

    async def remove_link(self, link_id: str, confirm: LinkConfirmation) -> bool:
        """Delete a link once ``confirm`` agrees; returns whether it was deleted.

        Local state is left alone: the link disappears when the delete
        notification arrives.
        """

        link = self._require_link(link_id)
        decision = confirm(link)
        if inspect.isawaitable(decision):
            decision = await decision
        if not decision:
            log.debug("Removal of link %s declined", link_id)
            return False

        async def run() -> None:
            self._require_link(link_id)
            await self._shifts.remove_link(link_id)

        await self._submit("remove_link", run)
        return True

    async def reconcile_now(self) -> int:
        """Run the completion scan immediately; returns the number of links written."""

        async def run() -> int:
            self._cancel_reconcile()
            return await self._reconcile()

        return await self._submit("reconcile", run)

    async def settle(self) -> None:
        """Wait until queued work is done, running any pending debounced scan now."""

        while True:
            await self._queue.join()
            await asyncio.sleep(0)
            if not self._queue.empty():
                continue
            if self._reconcile_handle is None:
                return
            self._cancel_reconcile()
            self._post(_Reconcile(self._epoch))

    # command handlers (run on the worker)

    async def _load(self) -> ShiftSnapshot:
        shift = await self._shifts.get_active(self.user_id)
        if shift is None:
            self._enter_no_shift()
            return self.snapshot
        epoch = self._enter_shift(shift)
        links = await self._shifts.list_links(shift.id)
        if self._is_current(epoch):
            self._set_links(links)
            self._notify()
        return self.snapshot

    async def _start(self, notes: str | None) -> Shift:
        if self._shift is not None:
            raise ValidationError(f"Shift {self._shift.id} is already active")
        shift = await self._shifts.start(self.user_id, notes)
        self._ended_shift = None
        self._enter_shift(shift)
        self._notify()
        return shift

    async def _end(self, notes: str | None) -> Shift:
        shift = self._require_shift()
        ended = await self._shifts.end(shift.id, notes)
        self._ended_shift = ended
        self._enter_no_shift()
        return ended

    async def _toggle(self, link_id: str) -> ShiftTicket:
        target = not self._require_link(link_id).completed

        def capture() -> tuple[bool, datetime | None]:
            current = self._require_link(link_id)
            return current.completed, current.completed_at

        def apply() -> None:
            self._patch_link(link_id, target, self._clock() if target else None)

        def restore(previous: tuple[bool, datetime | None]) -> None:
            self._patch_link(link_id, *previous)

        updated = await apply_optimistically(
            capture=capture,
            apply=apply,
            persist=lambda: self._shifts.set_completed(link_id, target),
            restore=restore,
            description=f"completion of link {link_id}",
        )
        self._apply_link(updated)
        self._notify()
        return updated

    async def _refresh(self) -> None:
        self._refresh_queued = False
        shift = self._shift
        if shift is None:
            return
        epoch = self._epoch
        links = await self._shifts.list_links(shift.id)
        if not self._is_current(epoch):
            log.debug("Discarding stale link list for shift %s", shift.id)
            return
        if self._set_links(links):
            self._notify()

    async def _reconcile(self) -> int:
        shift = self._shift
        if shift is None:
            return 0
        epoch = self._epoch
        written = 0
        for link in list(self._links):
            if link.ticket is None or link.completion_in_sync:
                continue
            try:
                updated = await self._shifts.set_completed(link.id, link.ticket.is_resolved)
            except DataError:
                log.exception("Could not reconcile link %s of shift %s", link.id, shift.id)
                continue
            if not self._is_current(epoch):
                return written
            self._apply_link(updated)
            written += 1
        if written:
            log.info("Reconciled %s link(s) of shift %s", written, shift.id)
            self._notify()
        return written

    # state transitions

    def _enter_shift(self, shift: Shift) -> int:
        self._reset_shift_state()
        self._shift = shift
        epoch = self._epoch

        def on_link_change(change: RecordChange[ShiftTicket]) -> None:
            self._on_link_change(epoch, change)

        self._unsubscribe_links = self._shifts.subscribe_links(shift.id, on_link_change)
        log.info("Tracking shift %s for %s", shift.id, self.user_id)
        return epoch

    def _enter_no_shift(self) -> None:
        self._reset_shift_state()
        self._notify()

    def _reset_shift_state(self) -> None:
        self._drop_link_subscription()
        self._cancel_reconcile()
        self._epoch += 1
        self._shift = None
        self._links = []
        self._refresh_queued = False

    def _set_links(self, links: list[ShiftTicket]) -> bool:
        if links == self._links:
            return False
        self._links = list(links)
        self._schedule_reconcile()
        return True

    def _apply_link(self, updated: ShiftTicket) -> None:
        for index, link in enumerate(self._links):
            if link.id == updated.id:
                self._links[index] = replace(updated, ticket=updated.ticket or link.ticket)
                return

    def _patch_link(self, link_id: str, completed: bool, completed_at: datetime | None) -> None:
        for index, link in enumerate(self._links):
            if link.id == link_id:
                self._links[index] = link.with_completion(completed, completed_at)
                self._notify()
                return

    def _remove_local(self, link_id: str) -> None:
        remaining = [link for link in self._links if link.id != link_id]
        if len(remaining) == len(self._links):
            return
        self._links = remaining
        self._schedule_reconcile()
        self._notify()

    def _require_shift(self) -> Shift:
        if self._shift is None:
            raise ValidationError("There is no active shift")
        return self._shift

    def _require_link(self, link_id: str) -> ShiftTicket:
        for link in self._links:
            if link.id == link_id:
                return link
        raise ValidationError(f"Link {link_id} is not part of the active shift")

    def _is_current(self, epoch: int) -> bool:
        return self._alive and epoch == self._epoch

    # notifications

    def _on_link_change(self, epoch: int, change: RecordChange[ShiftTicket]) -> None:
        if not self._is_current(epoch):
            return
        if change.type is ChangeType.DELETE:
            link_id = change.old_id
            if link_id is not None:
                self._post(_LinkRemoved(epoch, link_id))
            return
        self._request_refresh()

    def _on_ticket_change(self, change: RecordChange[Ticket]) -> None:
        if change.type is ChangeType.UPDATE and change.new is not None:
            self._post(_TicketChanged(self._epoch, change.new.id))

    def _request_refresh(self) -> None:
        if self._refresh_queued:
            log.debug("Link refresh already queued; coalescing")
            return
        self._refresh_queued = True
        self._post(_Refresh(self._epoch))

    def _schedule_reconcile(self) -> None:
        self._cancel_reconcile()
        loop = asyncio.get_running_loop()
        self._reconcile_handle = loop.call_later(
            self._config.reconcile_debounce_seconds, self._reconcile_due, self._epoch
        )

    def _reconcile_due(self, epoch: int) -> None:
        self._reconcile_handle = None
        self._post(_Reconcile(epoch))

    def _cancel_reconcile(self) -> None:
        if self._reconcile_handle is not None:
            self._reconcile_handle.cancel()
            self._reconcile_handle = None

    def _drop_link_subscription(self) -> None:
        if self._unsubscribe_links is not None:
            self._unsubscribe_links()
            self._unsubscribe_links = None

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot
        for listener in list(self._listeners.values()):
            try:
                listener(snapshot)
            except Exception:
                log.exception("Active shift listener failed")

    # worker

    def _post(self, message: _Message) -> None:
        if not self._alive:
            return
        self._queue.put_nowait(message)

    async def _submit[T](self, name: str, run: Callable[[], Awaitable[T]]) -> T:
        if not self._alive:
            raise RuntimeError("Active shift session is not open")
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._post(_Command(name, run, future))
        return await future

    async def _work(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._handle(message)
            finally:
                self._queue.task_done()

    async def _handle(self, message: _Message) -> None:
        if isinstance(message, _Command):
            await self._run_command(message)
            return
        if message.epoch != self._epoch:
            log.debug("Dropping stale %s", type(message).__name__)
            return
        try:
            if isinstance(message, _Refresh):
                await self._refresh()
            elif isinstance(message, _LinkRemoved):
                self._remove_local(message.link_id)
            elif isinstance(message, _TicketChanged):
                if any(link.ticket_id == message.ticket_id for link in self._links):
                    self._request_refresh()
            else:
                await self._reconcile()
        except Exception:
            log.exception("Background %s for %s failed", type(message).__name__, self.user_id)

    async def _run_command(self, command: _Command) -> None:
        if command.future.done():
            return
        try:
            result = await command.run()
        except asyncio.CancelledError:
            command.future.cancel()
            raise
        except Exception as exc:
            log.debug("Command %s failed: %s", command.name, exc)
            if not command.future.done():
                command.future.set_exception(exc)
        else:
            if not command.future.done():
                command.future.set_result(result)

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._config.duration_tick_seconds)
            if self._shift is not None:
                self._notify()


__all__ = [
    "ActiveShiftSession",
    "LinkConfirmation",
    "ShiftPhase",
    "ShiftSnapshot",
    "SnapshotListener",
    "completion_rate",
]
