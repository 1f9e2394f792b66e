"""Shift repository: shifts, their ticket links and link change subscriptions."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Final

from shiftdesk.config.sync import DEFAULT_DAY_START_HOUR, DEFAULT_SHIFT_HISTORY_LIMIT
from shiftdesk.domain.changes import parse_row, parse_rows, single_row, typed_callback
from shiftdesk.domain.clock import Clock, current_shift_date, utcnow
from shiftdesk.domain.errors import ValidationError
from shiftdesk.domain.model import Shift, ShiftStatus, ShiftTicket, Ticket
from shiftdesk.domain.ports.query import Embed, Eq, IsNull, OrderBy, Select

if TYPE_CHECKING:
    from collections.abc import Callable

    from shiftdesk.domain.changes import RecordChange
    from shiftdesk.domain.model import Row
    from shiftdesk.domain.ports.store import RemoteStore, Unsubscribe

log = getLogger(__name__)

SHIFTS: Final[str] = Shift.TABLE
LINKS: Final[str] = ShiftTicket.TABLE
TICKET_EMBED: Final[Embed] = Embed(name="ticket", table=Ticket.TABLE, foreign_key="ticket_id")


@dataclass(slots=True)
class ShiftRepository:
    store: RemoteStore
    clock: Clock = field(default=utcnow)
    day_start_hour: int = DEFAULT_DAY_START_HOUR

    async def get_active(self, user_id: str) -> Shift | None:
        """Return the user's running shift, or ``None`` when there is none."""

        result = await self.store.select(
            Select(
                table=SHIFTS,
                filters=(
                    Eq("user_email", user_id),
                    Eq("status", ShiftStatus.ACTIVE.value),
                    IsNull("ended_at"),
                ),
                order=(OrderBy("started_at", descending=True),),
                limit=1,
            )
        )
        if not result.rows:
            return None
        return parse_row(Shift.from_row, SHIFTS, result.rows[0])

    async def start(self, user_id: str, notes: str | None = None) -> Shift:
        if not user_id.strip():
            raise ValidationError("A user is required to start a shift")
        now = self.clock()
        row: Row = {
            "shift_date": current_shift_date(now, day_start_hour=self.day_start_hour),
            "started_at": now,
            "user_email": user_id,
            "status": ShiftStatus.ACTIVE.value,
            "notes": notes or None,
        }
        rows = await self.store.insert(SHIFTS, [row])
        shift = parse_row(Shift.from_row, SHIFTS, single_row(SHIFTS, rows, action="insert"))
        log.info("Started shift %s for %s (business day %s)", shift.id, user_id, shift.shift_date)
        return shift

    async def end(self, shift_id: str, notes: str | None = None) -> Shift:
        values: Row = {
            "ended_at": self.clock(),
            "status": ShiftStatus.COMPLETED.value,
            "notes": notes or None,
        }
        rows = await self.store.update(SHIFTS, values, [Eq("id", shift_id)])
        shift = parse_row(Shift.from_row, SHIFTS, single_row(SHIFTS, rows, action="update"))
        log.info("Ended shift %s", shift.id)
        return shift

    async def list_for_user(
        self, user_id: str, limit: int = DEFAULT_SHIFT_HISTORY_LIMIT
    ) -> list[Shift]:
        result = await self.store.select(
            Select(
                table=SHIFTS,
                filters=(Eq("user_email", user_id),),
                order=(OrderBy("started_at", descending=True),),
                limit=limit,
            )
        )
        return parse_rows(Shift.from_row, SHIFTS, result.rows)

    async def list_links(self, shift_id: str) -> list[ShiftTicket]:
        """Links of ``shift_id`` joined with their tickets, highest priority first.

        Equal priorities keep the order in which tickets were added.
        """

        result = await self.store.select(
            Select(
                table=LINKS,
                filters=(Eq("shift_id", shift_id),),
                order=(
                    OrderBy("priority", descending=True),
                    OrderBy("added_at"),
                ),
                embeds=(TICKET_EMBED,),
            )
        )
        return parse_rows(ShiftTicket.from_row, LINKS, result.rows)

    async def add_link(
        self,
        shift_id: str,
        ticket_id: str,
        priority: int = 0,
        notes: str | None = None,
    ) -> ShiftTicket:
        row: Row = {
            "shift_id": shift_id,
            "ticket_id": ticket_id,
            "priority": priority,
            "notes": notes or None,
        }
        rows = await self.store.insert(LINKS, [row])
        return parse_row(ShiftTicket.from_row, LINKS, single_row(LINKS, rows, action="insert"))

    async def set_completed(self, link_id: str, completed: bool) -> ShiftTicket:
        values: Row = {
            "completed": completed,
            "completed_at": self.clock() if completed else None,
        }
        return await self._update_link(link_id, values)

    async def set_priority(self, link_id: str, priority: int) -> ShiftTicket:
        return await self._update_link(link_id, {"priority": priority})

    async def remove_link(self, link_id: str) -> None:
        await self.store.delete(LINKS, [Eq("id", link_id)])

    def subscribe_links(
        self,
        shift_id: str,
        on_change: Callable[[RecordChange[ShiftTicket]], None],
    ) -> Unsubscribe:
        return self.store.subscribe(
            LINKS,
            typed_callback(ShiftTicket.from_row, LINKS, on_change),
            where=Eq("shift_id", shift_id),
        )

    async def _update_link(self, link_id: str, values: Row) -> ShiftTicket:
        rows = await self.store.update(LINKS, values, [Eq("id", link_id)])
        return parse_row(ShiftTicket.from_row, LINKS, single_row(LINKS, rows, action="update"))


__all__ = ["ShiftRepository"]
