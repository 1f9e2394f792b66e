"""Domain model for tickets, shifts and comments."""

from __future__ import annotations

from ._rows import Row, format_timestamp, parse_timestamp
from .comment import Comment
from .enums import ShiftStatus, TicketCategory, TicketStatus
from .shift import Shift, ShiftTicket
from .ticket import Ticket

__all__ = [
    "Comment",
    "Row",
    "Shift",
    "ShiftStatus",
    "ShiftTicket",
    "Ticket",
    "TicketCategory",
    "TicketStatus",
    "format_timestamp",
    "parse_timestamp",
]
