"""Ticket aggregate."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, ClassVar

from ._rows import optional_str, parse_timestamp, require_str, require_timestamp
from .enums import TicketCategory, TicketStatus

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True, slots=True, kw_only=True)
class Ticket:
    """A ticket as stored in the ``tickets`` table."""

    TABLE: ClassVar[str] = "tickets"

    id: str
    external_id: str
    title: str
    status: TicketStatus
    assignee: str
    category: TicketCategory
    notes: str | None = None
    last_activity_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status is TicketStatus.RESOLVED

    def with_status(self, status: TicketStatus) -> Ticket:
        return replace(self, status=status)

    @classmethod
    def from_row(cls, row: Mapping[str, object]) -> Ticket:
        return cls(
            id=require_str(row, "id"),
            external_id=require_str(row, "external_id"),
            title=require_str(row, "ticket_name"),
            status=TicketStatus(require_str(row, "status")),
            assignee=require_str(row, "assignee"),
            category=TicketCategory(require_str(row, "cti")),
            notes=optional_str(row, "notes"),
            last_activity_at=parse_timestamp(row.get("last_activity_at")),
            created_at=require_timestamp(row, "created_at"),
            updated_at=parse_timestamp(row.get("updated_at")),
        )
