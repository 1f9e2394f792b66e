"""Application composition and workflows."""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from shiftdesk.adapters.changefeed import ChangeFeed
from shiftdesk.adapters.hosted import HostedAuthGateway, HostedRemoteStore, RealtimeListener
from shiftdesk.adapters.local_auth import LocalAuthGateway
from shiftdesk.adapters.session_file import SessionFile
from shiftdesk.adapters.sqlalchemy.store import (
    SqlAlchemyRemoteStore,
    configured_engine,
    is_started,
    startup,
)
from shiftdesk.config import (
    ListingConfig,
    SyncConfig,
    get_hosted_backend_config,
    get_listing_config,
    get_storage_config,
    get_sync_config,
    hosted_backend_configured,
)
from shiftdesk.domain.active_shift import ActiveShiftSession
from shiftdesk.domain.clock import utcnow
from shiftdesk.domain.comments import CommentRepository
from shiftdesk.domain.errors import ValidationError
from shiftdesk.domain.listing import TicketListView
from shiftdesk.domain.model import TicketCategory, TicketStatus
from shiftdesk.domain.session import AuthContext
from shiftdesk.domain.shifts import ShiftRepository
from shiftdesk.domain.ticket_detail import TicketDetailView
from shiftdesk.domain.tickets import TicketDraft, TicketRepository

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from pathlib import Path

    from sqlalchemy.engine import Engine

    from shiftdesk.config import HostedBackendConfig, StorageConfig
    from shiftdesk.domain.clock import Clock
    from shiftdesk.domain.model import ShiftTicket, Ticket
    from shiftdesk.domain.ports.auth import AuthGateway
    from shiftdesk.domain.ports.store import RemoteStore

log = getLogger(__name__)

CSV_COLUMNS = ("external_id", "ticket_name", "status", "assignee", "cti", "notes")
REQUIRED_CSV_COLUMNS = ("external_id", "ticket_name", "assignee", "cti")


@dataclass(slots=True)
class Services:
    """Repositories and view-state factories sharing one store and auth context."""

    store: RemoteStore
    auth: AuthContext
    tickets: TicketRepository
    shifts: ShiftRepository
    comments: CommentRepository
    clock: Clock = field(default=utcnow)
    sync: SyncConfig = field(default_factory=SyncConfig)
    listing: ListingConfig = field(default_factory=ListingConfig)
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        for closer in reversed(self.closers):
            await closer()
        self.closers.clear()

    def active_shift(self) -> ActiveShiftSession:
        return ActiveShiftSession(
            user_id=self.auth.user_id,
            shifts=self.shifts,
            tickets=self.tickets,
            clock=self.clock,
            config=self.sync,
        )

    def ticket_detail(self, ticket_id: str) -> TicketDetailView:
        return TicketDetailView(
            ticket_id,
            tickets=self.tickets,
            comments=self.comments,
            author=self.auth.user_id,
            clock=self.clock,
        )

    def ticket_list(self) -> TicketListView:
        return TicketListView(self.tickets, page_size=self.listing.view_page_size)


def _compose(
    store: RemoteStore,
    auth: AuthContext,
    *,
    clock: Clock,
    sync: SyncConfig,
    listing: ListingConfig,
) -> Services:
    return Services(
        store=store,
        auth=auth,
        tickets=TicketRepository(store, clock=clock),
        shifts=ShiftRepository(store, clock=clock, day_start_hour=sync.day_start_hour),
        comments=CommentRepository(store, clock=clock),
        clock=clock,
        sync=sync,
        listing=listing,
    )


def build_local_services(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    storage: StorageConfig | None = None,
    auth_gateway: AuthGateway | None = None,
    clock: Clock = utcnow,
    sync: SyncConfig | None = None,
) -> Services:
    """Services backed by the local SQLAlchemy database."""

    storage_config = storage or get_storage_config()
    if engine is not None:
        startup(engine=engine, force=True)
    elif database_uri is not None:
        startup(database_uri=database_uri, force=True)
    elif not is_started():
        startup()
    store = SqlAlchemyRemoteStore(configured_engine(), feed=ChangeFeed(), clock=clock)
    gateway = auth_gateway or LocalAuthGateway(SessionFile(storage_config.auth_session_path()))
    return _compose(
        store,
        AuthContext(gateway),
        clock=clock,
        sync=sync or get_sync_config(),
        listing=get_listing_config(),
    )


def build_hosted_services(
    *,
    backend: HostedBackendConfig | None = None,
    storage: StorageConfig | None = None,
    clock: Clock = utcnow,
    sync: SyncConfig | None = None,
) -> Services:
    """Services backed by the hosted data, auth and realtime APIs."""

    backend_config = backend or get_hosted_backend_config()
    storage_config = storage or get_storage_config()
    gateway = HostedAuthGateway(
        backend_config, SessionFile(storage_config.auth_session_path())
    )
    auth = AuthContext(gateway, clock=clock)

    async def access_token() -> str | None:
        session = await auth.ensure_fresh()
        return session.access_token if session else None

    feed = ChangeFeed()
    realtime = RealtimeListener(backend_config, feed, access_token=access_token)
    store = HostedRemoteStore(
        backend_config, access_token=access_token, feed=feed, realtime=realtime
    )
    services = _compose(
        store,
        auth,
        clock=clock,
        sync=sync or get_sync_config(),
        listing=get_listing_config(),
    )
    services.closers.extend([gateway.aclose, store.aclose])
    return services


def build_services(*, database_uri: str | None = None) -> Services:
    """Hosted services when a backend is configured, otherwise the local database."""

    if database_uri is None and hosted_backend_configured():
        log.info("Using hosted backend")
        return build_hosted_services()
    return build_local_services(database_uri=database_uri)


@dataclass(frozen=True, slots=True)
class CreatedTicket:
    ticket: Ticket
    link: ShiftTicket | None = None


async def create_ticket(
    services: Services,
    draft: TicketDraft,
    *,
    shift_id: str | None = None,
    priority: int = 0,
) -> CreatedTicket:
    """Create a ticket and, when ``shift_id`` is given, add it to that shift."""

    ticket = await services.tickets.create(draft)
    if shift_id is None:
        return CreatedTicket(ticket=ticket)
    link = await services.shifts.add_link(shift_id, ticket.id, priority)
    log.info(
        "Added ticket %s to shift %s with priority %s", ticket.external_id, shift_id, priority
    )
    return CreatedTicket(ticket=ticket, link=link)


def _parse_choice[E: StrEnum](
    enum_type: type[E], raw: str | None, *, line: int, column: str, default: E | None = None
) -> E:
    value = (raw or "").strip().lower()
    if not value and default is not None:
        return default
    try:
        return enum_type(value)
    except ValueError:
        raise ValidationError(f"Line {line}: invalid {column} {raw!r}") from None


def read_ticket_rows(rows: Iterable[dict[str, str | None]]) -> list[TicketDraft]:
    """Turn CSV dict rows into drafts; line numbers in errors count the header."""

    drafts: list[TicketDraft] = []
    for line, row in enumerate(rows, start=2):
        draft = TicketDraft(
            external_id=(row.get("external_id") or "").strip(),
            title=(row.get("ticket_name") or "").strip(),
            assignee=(row.get("assignee") or "").strip(),
            category=_parse_choice(TicketCategory, row.get("cti"), line=line, column="cti"),
            status=_parse_choice(
                TicketStatus,
                row.get("status"),
                line=line,
                column="status",
                default=TicketStatus.ASSIGNED,
            ),
            notes=(row.get("notes") or "").strip() or None,
        )
        try:
            draft.validate()
        except ValidationError as exc:
            raise ValidationError(f"Line {line}: {exc}") from exc
        drafts.append(draft)
    return drafts


async def import_tickets_csv(services: Services, path: Path) -> int:
    """Upsert every ticket in the CSV file at ``path``; returns rows written."""

    with path.open(newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        columns = reader.fieldnames or []
        missing = [name for name in REQUIRED_CSV_COLUMNS if name not in columns]
        if missing:
            raise ValidationError(f"CSV is missing columns: {', '.join(missing)}")
        drafts = read_ticket_rows(reader)
    written = await services.tickets.upsert_batch(drafts)
    log.info("Imported %s tickets from %s", written, path)
    return written


__all__ = [
    "CSV_COLUMNS",
    "REQUIRED_CSV_COLUMNS",
    "CreatedTicket",
    "Services",
    "build_hosted_services",
    "build_local_services",
    "build_services",
    "create_ticket",
    "import_tickets_csv",
    "read_ticket_rows",
]
