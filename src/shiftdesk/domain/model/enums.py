"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class TicketStatus(StrEnum):
    """Ticket workflow status, in display order."""

    ASSIGNED = "assigned"
    PENDING = "pending"
    RESEARCHING = "researching"
    WORK_IN_PROGRESS = "work_in_progress"
    ESCALATED = "escalated"
    RESOLVED = "resolved"

    @property
    def label(self) -> str:
        if self is TicketStatus.WORK_IN_PROGRESS:
            return "In Progress"
        return self.value.capitalize()


class TicketCategory(StrEnum):
    """CTI classification of a ticket."""

    HARDWARE = "hardware"
    NETWORKING = "networking"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class ShiftStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
