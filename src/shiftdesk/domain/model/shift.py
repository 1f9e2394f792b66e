"""Shift aggregate and its ticket links."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import TYPE_CHECKING, ClassVar

from ._rows import (
    optional_str,
    parse_date,
    parse_timestamp,
    require_stamped_when,
    require_str,
    require_timestamp,
)
from .enums import ShiftStatus
from .ticket import Ticket

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True, slots=True, kw_only=True)
class Shift:
    """A work shift owned by one user."""

    TABLE: ClassVar[str] = "shifts"

    id: str
    shift_date: date
    started_at: datetime
    user_id: str
    status: ShiftStatus
    ended_at: datetime | None = None
    notes: str | None = None
    created_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is ShiftStatus.ACTIVE and self.ended_at is None

    @classmethod
    def from_row(cls, row: Mapping[str, object]) -> Shift:
        status = ShiftStatus(require_str(row, "status"))
        ended_at = parse_timestamp(row.get("ended_at"))
        require_stamped_when(
            status is ShiftStatus.COMPLETED,
            ended_at,
            flag_name="status completed",
            stamp_name="ended_at",
        )
        return cls(
            id=require_str(row, "id"),
            shift_date=parse_date(row.get("shift_date")),
            started_at=require_timestamp(row, "started_at"),
            ended_at=ended_at,
            user_id=require_str(row, "user_email"),
            status=status,
            notes=optional_str(row, "notes"),
            created_at=parse_timestamp(row.get("created_at")),
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class ShiftTicket:
    """Link between a shift and a ticket, joined with the ticket when listed.

    ``completed`` mirrors whether the linked ticket is resolved; the active shift
    session keeps the two in step.
    """

    TABLE: ClassVar[str] = "shift_tickets"

    id: str
    shift_id: str
    ticket_id: str
    priority: int = 0
    completed: bool = False
    completed_at: datetime | None = None
    notes: str | None = None
    added_at: datetime | None = None
    ticket: Ticket | None = None

    @property
    def completion_in_sync(self) -> bool:
        """Whether ``completed`` already agrees with the joined ticket status."""

        if self.ticket is None:
            return True
        return self.completed == self.ticket.is_resolved

    def with_completion(self, completed: bool, completed_at: datetime | None) -> ShiftTicket:
        return replace(self, completed=completed, completed_at=completed_at)

    @classmethod
    def from_row(cls, row: Mapping[str, object]) -> ShiftTicket:
        embedded = row.get("ticket")
        ticket = Ticket.from_row(embedded) if isinstance(embedded, dict) else None
        priority = row.get("priority")
        completed = bool(row.get("completed") or False)
        completed_at = parse_timestamp(row.get("completed_at"))
        require_stamped_when(
            completed, completed_at, flag_name="completed", stamp_name="completed_at"
        )
        return cls(
            id=require_str(row, "id"),
            shift_id=require_str(row, "shift_id"),
            ticket_id=require_str(row, "ticket_id"),
            priority=int(priority) if isinstance(priority, int | str) else 0,
            completed=completed,
            completed_at=completed_at,
            notes=optional_str(row, "notes"),
            added_at=parse_timestamp(row.get("added_at")),
            ticket=ticket,
        )
