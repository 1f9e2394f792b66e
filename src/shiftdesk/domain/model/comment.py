"""Ticket comments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, ClassVar

from ._rows import parse_timestamp, require_str, require_timestamp

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True, slots=True, kw_only=True)
class Comment:
    TABLE: ClassVar[str] = "ticket_comments"

    id: str
    ticket_id: str
    author: str
    content: str
    created_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, object]) -> Comment:
        return cls(
            id=require_str(row, "id"),
            ticket_id=require_str(row, "ticket_id"),
            author=require_str(row, "user_email"),
            content=require_str(row, "content"),
            created_at=require_timestamp(row, "created_at"),
            updated_at=parse_timestamp(row.get("updated_at")),
        )
