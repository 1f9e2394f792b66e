"""View state for a single ticket: fields, live comments and activity timeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from shiftdesk.domain.clock import utcnow
from shiftdesk.domain.errors import ValidationError
from shiftdesk.domain.model import TicketStatus
from shiftdesk.domain.ports.store import ChangeType
from shiftdesk.domain.tickets import TicketPatch

if TYPE_CHECKING:
    from datetime import datetime

    from shiftdesk.domain.changes import RecordChange
    from shiftdesk.domain.clock import Clock
    from shiftdesk.domain.comments import CommentRepository
    from shiftdesk.domain.model import Comment, Ticket
    from shiftdesk.domain.ports.store import Unsubscribe
    from shiftdesk.domain.tickets import TicketRepository

log = getLogger(__name__)


class ActivityKind(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    COMMENT = "comment"


@dataclass(frozen=True, slots=True)
class Activity:
    kind: ActivityKind
    at: datetime
    text: str
    author: str | None = None


class TicketDetailView:
    """Loads one ticket and keeps its comment thread current while open.

    The comment list is only changed by the comment subscription, so a posted
    comment shows up once the store reports the insert.
    """

    def __init__(
        self,
        ticket_id: str,
        *,
        tickets: TicketRepository,
        comments: CommentRepository,
        author: str,
        clock: Clock = utcnow,
    ) -> None:
        self.ticket_id = ticket_id
        self._tickets = tickets
        self._comments = comments
        self._author = author
        self._clock = clock
        self._ticket: Ticket | None = None
        self._thread: list[Comment] = []
        self._updates: list[Activity] = []
        self._loaded = False
        self._unsubscribe: Unsubscribe | None = None

    @property
    def ticket(self) -> Ticket | None:
        return self._ticket

    @property
    def not_found(self) -> bool:
        return self._loaded and self._ticket is None

    @property
    def comments(self) -> list[Comment]:
        return list(self._thread)

    async def load(self) -> Ticket | None:
        self._ticket = await self._tickets.get(self.ticket_id)
        self._loaded = True
        if self._ticket is None:
            log.info("Ticket %s not found", self.ticket_id)
            return None
        if self._unsubscribe is None:
            self._unsubscribe = self._comments.subscribe(self.ticket_id, self._on_comment)
        self._thread = await self._comments.list(self.ticket_id)
        return self._ticket

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def activities(self) -> list[Activity]:
        """Comments, saves and the creation entry, newest first."""

        entries = [
            Activity(ActivityKind.COMMENT, comment.created_at, comment.content, comment.author)
            for comment in self._thread
        ]
        entries.extend(self._updates)
        if self._ticket is not None and self._ticket.created_at is not None:
            created = Activity(ActivityKind.CREATED, self._ticket.created_at, "Ticket created")
            entries.append(created)
        return sorted(entries, key=lambda entry: entry.at, reverse=True)

    async def save(self, patch: TicketPatch) -> Ticket:
        ticket = self._require_ticket()
        updated = await self._tickets.update(ticket.id, patch)
        self._ticket = updated
        self._updates.append(
            Activity(ActivityKind.UPDATED, self._clock(), "Ticket updated", self._author)
        )
        return updated

    async def mark_resolved(self) -> Ticket:
        return await self.save(TicketPatch(status=TicketStatus.RESOLVED))

    async def escalate(self) -> Ticket:
        return await self.save(TicketPatch(status=TicketStatus.ESCALATED))

    async def post_comment(self, content: str) -> Comment:
        self._require_ticket()
        if not content.strip():
            raise ValidationError("Comment content must not be blank")
        return await self._comments.create(self.ticket_id, self._author, content)

    def _require_ticket(self) -> Ticket:
        if self._ticket is None:
            raise ValidationError(f"Ticket {self.ticket_id} is not loaded")
        return self._ticket

    def _on_comment(self, change: RecordChange[Comment]) -> None:
        if change.type is ChangeType.DELETE:
            removed = change.old_id
            self._thread = [comment for comment in self._thread if comment.id != removed]
            return
        comment = change.new
        if comment is None:
            return
        if change.type is ChangeType.INSERT:
            if all(existing.id != comment.id for existing in self._thread):
                self._thread.insert(0, comment)
            return
        self._thread = [
            comment if existing.id == comment.id else existing for existing in self._thread
        ]


__all__ = ["Activity", "ActivityKind", "TicketDetailView"]
