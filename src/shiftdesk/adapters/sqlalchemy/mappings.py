"""SQLAlchemy Core tables for the local store."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Dialect,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
)

from shiftdesk.domain.model import ShiftStatus, TicketCategory, TicketStatus

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

ID_LENGTH: Final[int] = 36


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def _one_of(column: str, values: Iterable[str]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_label)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

tickets_table = Table(
    "tickets",
    metadata,
    Column("id", String(ID_LENGTH), primary_key=True),
    Column("external_id", String, nullable=False, unique=True),
    Column("ticket_name", String, nullable=False),
    Column("status", String(32), nullable=False, default=TicketStatus.ASSIGNED.value),
    Column("assignee", String, nullable=False),
    Column("cti", String(32), nullable=False),
    Column("notes", Text, nullable=True),
    Column("last_activity_at", UTCDateTime(), nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=True),
    CheckConstraint(_one_of("status", TicketStatus), name="status"),
    CheckConstraint(_one_of("cti", TicketCategory), name="cti"),
)

shifts_table = Table(
    "shifts",
    metadata,
    Column("id", String(ID_LENGTH), primary_key=True),
    Column("shift_date", Date, nullable=False),
    Column("started_at", UTCDateTime(), nullable=False),
    Column("ended_at", UTCDateTime(), nullable=True),
    Column("user_email", String, nullable=False),
    Column("status", String(32), nullable=False, default=ShiftStatus.ACTIVE.value),
    Column("notes", Text, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    CheckConstraint(_one_of("status", ShiftStatus), name="status"),
    Index("ix_shifts_user_email", "user_email"),
)

shift_tickets_table = Table(
    "shift_tickets",
    metadata,
    Column("id", String(ID_LENGTH), primary_key=True),
    Column(
        "shift_id",
        String(ID_LENGTH),
        ForeignKey("shifts.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "ticket_id",
        String(ID_LENGTH),
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("priority", Integer, nullable=False, default=0),
    Column("completed", Boolean, nullable=False, default=False),
    Column("completed_at", UTCDateTime(), nullable=True),
    Column("notes", Text, nullable=True),
    Column("added_at", UTCDateTime(), nullable=False),
    Index("ix_shift_tickets_shift_id", "shift_id"),
)

ticket_comments_table = Table(
    "ticket_comments",
    metadata,
    Column("id", String(ID_LENGTH), primary_key=True),
    Column(
        "ticket_id",
        String(ID_LENGTH),
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("user_email", String, nullable=False),
    Column("content", Text, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=True),
    Index("ix_ticket_comments_ticket_id", "ticket_id"),
)

TABLES: Final[dict[str, Table]] = {
    table.name: table
    for table in (tickets_table, shifts_table, shift_tickets_table, ticket_comments_table)
}

# columns stamped by the store when a row is written without them
INSERT_TIMESTAMPS: Final[dict[str, tuple[str, ...]]] = {
    "tickets": ("created_at", "updated_at"),
    "shifts": ("created_at",),
    "shift_tickets": ("added_at",),
    "ticket_comments": ("created_at",),
}
UPDATE_TIMESTAMPS: Final[dict[str, tuple[str, ...]]] = {
    "tickets": ("updated_at",),
}


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    metadata.create_all(engine)


__all__ = [
    "INSERT_TIMESTAMPS",
    "TABLES",
    "UPDATE_TIMESTAMPS",
    "UTCDateTime",
    "create_all_tables",
    "metadata",
    "shift_tickets_table",
    "shifts_table",
    "ticket_comments_table",
    "tickets_table",
]
