from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.engine import Engine  # noqa: TC002

from shiftdesk.adapters.sqlalchemy.migrations import upgrade_head
from shiftdesk.adapters.sqlalchemy.store import (
    SqlAlchemyRemoteStore,
    create_store_engine,
    shutdown,
)
from shiftdesk.domain.comments import CommentRepository
from shiftdesk.domain.shifts import ShiftRepository
from shiftdesk.domain.tickets import TicketRepository
from tests.helpers.tickets import FixedClock

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_store_engine("sqlite+pysqlite:///:memory:")
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        shutdown()
        engine.dispose()


@pytest.fixture
def store(sqlite_engine: Engine, clock: FixedClock) -> SqlAlchemyRemoteStore:
    return SqlAlchemyRemoteStore(sqlite_engine, clock=clock)


@pytest.fixture
def tickets(store: SqlAlchemyRemoteStore, clock: FixedClock) -> TicketRepository:
    return TicketRepository(store, clock=clock)


@pytest.fixture
def shifts(store: SqlAlchemyRemoteStore, clock: FixedClock) -> ShiftRepository:
    return ShiftRepository(store, clock=clock)


@pytest.fixture
def comments(store: SqlAlchemyRemoteStore, clock: FixedClock) -> CommentRepository:
    return CommentRepository(store, clock=clock)
