"""``RemoteStore`` over a local SQLAlchemy database.

The store stamps ids and write timestamps itself, publishes a change event for
every committed row mutation through a ``ChangeFeed`` and translates
SQLAlchemy failures into ``DataError``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, event, func, or_
from sqlalchemy import select as sa_select
from sqlalchemy.exc import SQLAlchemyError

from shiftdesk.adapters.changefeed import ChangeFeed
from shiftdesk.adapters.sqlalchemy.mappings import INSERT_TIMESTAMPS, TABLES, UPDATE_TIMESTAMPS
from shiftdesk.adapters.sqlalchemy.migrations import upgrade_head
from shiftdesk.config import get_database_config
from shiftdesk.domain.clock import utcnow
from shiftdesk.domain.errors import DataError
from shiftdesk.domain.ports.query import AnyContains, Contains, Eq, IsNull, QueryResult
from shiftdesk.domain.ports.store import ChangeEvent, ChangeType

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy import ColumnElement, Table
    from sqlalchemy.engine import Connection, Engine

    from shiftdesk.domain.clock import Clock
    from shiftdesk.domain.model import Row
    from shiftdesk.domain.ports.query import Embed, Filter, Select
    from shiftdesk.domain.ports.store import ChangeCallback, Unsubscribe

log = getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when the SQLAlchemy store is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    engine: Engine | None = None

    def require_engine(self) -> Engine:
        if self.engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call shiftdesk.adapters.sqlalchemy."
                "store.startup() before creating a store."
            )
        return self.engine


_STATE = _AdapterState()


def create_store_engine(database_uri: str) -> Engine:
    """Create an engine; SQLite connections get foreign key enforcement."""

    engine = create_engine(database_uri, future=True)
    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> Engine:
    """Initialise the engine and bring the schema up to date."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )

    resolved_engine = engine or create_store_engine(database_uri or get_database_config().uri)
    upgrade_head(engine=resolved_engine)
    _STATE.engine = resolved_engine
    log.info("Local store ready at %s", resolved_engine.url)
    return resolved_engine


def configured_engine() -> Engine | None:
    """Return the engine currently managed by the adapter (if any)."""

    return _STATE.engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None


def _new_id() -> str:
    return str(uuid.uuid4())


def _message(exc: SQLAlchemyError) -> str:
    original = getattr(exc, "orig", None)
    return str(original) if original is not None else str(exc)


class SqlAlchemyRemoteStore:
    """Local relational store with an in-process change feed.

    Statements run synchronously on the event loop thread, which keeps SQLite
    in-memory databases (bound to one connection) usable from coroutines.
    """

    def __init__(
        self,
        engine: Engine | None = None,
        *,
        feed: ChangeFeed | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._engine = engine or _STATE.require_engine()
        self._feed = feed or ChangeFeed()
        self._clock = clock

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    async def select(self, query: Select) -> QueryResult:
        table = self._table(query.table)
        conditions = self._conditions(table, query.filters)
        statement = sa_select(table).where(*conditions)
        for order in query.order:
            column = self._column(table, order.column)
            expression = column.desc() if order.descending else column.asc()
            statement = statement.order_by(
                expression.nulls_last() if order.nulls_last else expression.nulls_first()
            )
        if query.offset:
            statement = statement.offset(query.offset)
        if query.limit is not None:
            statement = statement.limit(query.limit)

        try:
            with self._engine.connect() as connection:
                rows = [dict(row._mapping) for row in connection.execute(statement)]
                count = None
                if query.count:
                    count_statement = sa_select(func.count()).select_from(table).where(*conditions)
                    count = int(connection.execute(count_statement).scalar_one())
                for embed in query.embeds:
                    self._attach(connection, rows, embed)
        except SQLAlchemyError as exc:
            raise DataError(_message(exc)) from exc
        return QueryResult(rows=rows, count=count)

    async def insert(self, table: str, rows: Sequence[Row]) -> list[Row]:
        target = self._table(table)
        now = self._clock()
        prepared = [self._prepare_insert(table, row, now) for row in rows]
        if not prepared:
            return []
        try:
            with self._engine.begin() as connection:
                connection.execute(target.insert(), prepared)
                stored = self._fetch(connection, target, [str(row["id"]) for row in prepared])
        except SQLAlchemyError as exc:
            raise DataError(_message(exc)) from exc
        self._publish([ChangeEvent(table, ChangeType.INSERT, new=row) for row in stored])
        return stored

    async def update(self, table: str, values: Row, filters: Sequence[Filter]) -> list[Row]:
        target = self._table(table)
        conditions = self._conditions(target, filters)
        changes = self._prepare_update(table, values, self._clock())
        try:
            with self._engine.begin() as connection:
                before = [
                    dict(row._mapping)
                    for row in connection.execute(sa_select(target).where(*conditions))
                ]
                if not before:
                    return []
                ids = [str(row["id"]) for row in before]
                connection.execute(target.update().where(target.c.id.in_(ids)).values(changes))
                after = self._fetch(connection, target, ids)
        except SQLAlchemyError as exc:
            raise DataError(_message(exc)) from exc
        self._publish(
            [
                ChangeEvent(table, ChangeType.UPDATE, new=new, old=old)
                for new, old in zip(after, before, strict=True)
            ]
        )
        return after

    async def delete(self, table: str, filters: Sequence[Filter]) -> list[Row]:
        target = self._table(table)
        conditions = self._conditions(target, filters)
        try:
            with self._engine.begin() as connection:
                removed = [
                    dict(row._mapping)
                    for row in connection.execute(sa_select(target).where(*conditions))
                ]
                if removed:
                    ids = [str(row["id"]) for row in removed]
                    connection.execute(target.delete().where(target.c.id.in_(ids)))
        except SQLAlchemyError as exc:
            raise DataError(_message(exc)) from exc
        self._publish([ChangeEvent(table, ChangeType.DELETE, old=row) for row in removed])
        return removed

    async def upsert(self, table: str, rows: Sequence[Row], *, on_conflict: str) -> list[Row]:
        target = self._table(table)
        key_column = self._column(target, on_conflict)
        now = self._clock()
        events: list[ChangeEvent] = []
        written_ids: list[str] = []
        try:
            with self._engine.begin() as connection:
                for row in rows:
                    if on_conflict not in row:
                        raise DataError(f"Upsert row is missing conflict column '{on_conflict}'")
                    existing = connection.execute(
                        sa_select(target).where(key_column == row[on_conflict])
                    ).first()
                    if existing is None:
                        prepared = self._prepare_insert(table, row, now)
                        connection.execute(target.insert(), [prepared])
                        record_id = str(prepared["id"])
                        stored = self._fetch(connection, target, [record_id])[0]
                        events.append(ChangeEvent(table, ChangeType.INSERT, new=stored))
                    else:
                        old = dict(existing._mapping)
                        record_id = str(old["id"])
                        values = {key: value for key, value in row.items() if key != "id"}
                        connection.execute(
                            target.update()
                            .where(target.c.id == record_id)
                            .values(self._prepare_update(table, values, now))
                        )
                        stored = self._fetch(connection, target, [record_id])[0]
                        events.append(ChangeEvent(table, ChangeType.UPDATE, new=stored, old=old))
                    written_ids.append(record_id)
                written = self._fetch(connection, target, list(dict.fromkeys(written_ids)))
        except SQLAlchemyError as exc:
            raise DataError(_message(exc)) from exc
        self._publish(events)
        return written

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        where: Eq | None = None,
    ) -> Unsubscribe:
        self._table(table)
        return self._feed.subscribe(table, callback, where=where)

    def _publish(self, events: list[ChangeEvent]) -> None:
        if events:
            log.debug("Publishing %s %s change(s)", len(events), events[0].table)
        self._feed.publish_all(events)

    def _table(self, name: str) -> Table:
        try:
            return TABLES[name]
        except KeyError:
            raise DataError(f"Unknown table '{name}'") from None

    def _column(self, table: Table, name: str) -> ColumnElement[Any]:
        try:
            return table.c[name]
        except KeyError:
            raise DataError(f"Unknown column '{name}' on {table.name}") from None

    def _conditions(self, table: Table, filters: Sequence[Filter]) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = []
        for item in filters:
            if isinstance(item, Eq):
                column = self._column(table, item.column)
                conditions.append(column.is_(None) if item.value is None else column == item.value)
            elif isinstance(item, IsNull):
                conditions.append(self._column(table, item.column).is_(None))
            elif isinstance(item, Contains):
                column = self._column(table, item.column)
                conditions.append(column.icontains(item.text, autoescape=True))
            elif isinstance(item, AnyContains):
                conditions.append(
                    or_(
                        *(
                            self._column(table, name).icontains(item.text, autoescape=True)
                            for name in item.columns
                        )
                    )
                )
            else:
                raise DataError(f"Unsupported filter {item!r}")
        return conditions

    def _prepare_insert(self, table: str, row: Row, now: object) -> Row:
        prepared = dict(row)
        prepared.setdefault("id", _new_id())
        if prepared["id"] is None:
            prepared["id"] = _new_id()
        for column in INSERT_TIMESTAMPS.get(table, ()):
            if prepared.get(column) is None:
                prepared[column] = now
        return prepared

    def _prepare_update(self, table: str, values: Row, now: object) -> Row:
        prepared = dict(values)
        for column in UPDATE_TIMESTAMPS.get(table, ()):
            prepared.setdefault(column, now)
        return prepared

    def _fetch(self, connection: Connection, table: Table, ids: list[str]) -> list[Row]:
        if not ids:
            return []
        found = {
            str(row["id"]): row
            for row in (
                dict(result._mapping)
                for result in connection.execute(sa_select(table).where(table.c.id.in_(ids)))
            )
        }
        return [found[record_id] for record_id in ids if record_id in found]

    def _attach(self, connection: Connection, rows: list[Row], embed: Embed) -> None:
        target = self._table(embed.table)
        keys = sorted({str(row[embed.foreign_key]) for row in rows if row.get(embed.foreign_key)})
        by_id = {str(row["id"]): row for row in self._fetch(connection, target, keys)}
        for row in rows:
            key = row.get(embed.foreign_key)
            row[embed.name] = by_id.get(str(key)) if key is not None else None


__all__ = [
    "SqlAlchemyRemoteStore",
    "StartupError",
    "configured_engine",
    "create_store_engine",
    "is_started",
    "shutdown",
    "startup",
]
