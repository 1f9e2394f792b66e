"""Comment repository for per-ticket discussion threads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from shiftdesk.domain.changes import parse_row, parse_rows, single_row, typed_callback
from shiftdesk.domain.clock import Clock, utcnow
from shiftdesk.domain.errors import ValidationError
from shiftdesk.domain.model import Comment
from shiftdesk.domain.ports.query import Eq, OrderBy, Select

if TYPE_CHECKING:
    from collections.abc import Callable

    from shiftdesk.domain.changes import RecordChange
    from shiftdesk.domain.ports.store import RemoteStore, Unsubscribe

TABLE: Final[str] = Comment.TABLE


def _clean_content(content: str) -> str:
    cleaned = content.strip()
    if not cleaned:
        raise ValidationError("Comment content must not be blank")
    return cleaned


@dataclass(slots=True)
class CommentRepository:
    store: RemoteStore
    clock: Clock = field(default=utcnow)

    async def list(self, ticket_id: str) -> list[Comment]:
        """Comments of ``ticket_id``, most recent first."""

        result = await self.store.select(
            Select(
                table=TABLE,
                filters=(Eq("ticket_id", ticket_id),),
                order=(OrderBy("created_at", descending=True),),
            )
        )
        return parse_rows(Comment.from_row, TABLE, result.rows)

    async def create(self, ticket_id: str, author: str, content: str) -> Comment:
        if not author.strip():
            raise ValidationError("A comment needs an author")
        rows = await self.store.insert(
            TABLE,
            [{"ticket_id": ticket_id, "user_email": author, "content": _clean_content(content)}],
        )
        return parse_row(Comment.from_row, TABLE, single_row(TABLE, rows, action="insert"))

    async def update(self, comment_id: str, content: str) -> Comment:
        rows = await self.store.update(
            TABLE,
            {"content": _clean_content(content), "updated_at": self.clock()},
            [Eq("id", comment_id)],
        )
        return parse_row(Comment.from_row, TABLE, single_row(TABLE, rows, action="update"))

    async def delete(self, comment_id: str) -> None:
        await self.store.delete(TABLE, [Eq("id", comment_id)])

    def subscribe(
        self,
        ticket_id: str,
        on_change: Callable[[RecordChange[Comment]], None],
    ) -> Unsubscribe:
        return self.store.subscribe(
            TABLE,
            typed_callback(Comment.from_row, TABLE, on_change),
            where=Eq("ticket_id", ticket_id),
        )


__all__ = ["CommentRepository"]
