"""Command line front end for tickets, comments and shifts."""

# ruff: noqa: T201

from __future__ import annotations

import argparse
import asyncio
import locale
import logging
import sys
from getpass import getpass
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from shiftdesk.app import build_services, create_ticket, import_tickets_csv
from shiftdesk.config import configure_logging
from shiftdesk.domain.errors import NotSignedInError, ValidationError
from shiftdesk.domain.model import TicketCategory, TicketStatus
from shiftdesk.domain.tickets import TicketDraft, TicketListRequest, TicketSortColumn

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from shiftdesk.app import Services
    from shiftdesk.domain.active_shift import ActiveShiftSession, ShiftSnapshot
    from shiftdesk.domain.model import ShiftTicket, Ticket

log = logging.getLogger(__name__)

_STATUS_CHOICES = [status.value for status in TicketStatus]
_CATEGORY_CHOICES = [category.value for category in TicketCategory]
_SORT_CHOICES = [column.value for column in TicketSortColumn]


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Track tickets and shifts")
    parser.add_argument(
        "--database-uri",
        type=str,
        help="SQLAlchemy URI of the local database (overrides DATABASE_URI)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser("login", help="Sign in and remember the session")
    login.add_argument("--email", type=str, required=True, help="Account email address")
    login.add_argument("--password", type=str, help="Password (prompted when omitted)")
    subparsers.add_parser("logout", help="Sign out and forget the stored session")
    subparsers.add_parser("whoami", help="Show the signed-in user")

    tickets = subparsers.add_parser("tickets", help="Ticket commands")
    tickets_sub = tickets.add_subparsers(dest="tickets_command", required=True)
    tickets_list = tickets_sub.add_parser("list", help="List tickets")
    tickets_list.add_argument("--query", type=str, default="", help="Free-text search")
    tickets_list.add_argument("--status", choices=_STATUS_CHOICES, help="Only this status")
    tickets_list.add_argument("--category", choices=_CATEGORY_CHOICES, help="Only this CTI")
    tickets_list.add_argument("--assignee", type=str, default="", help="Assignee contains")
    tickets_list.add_argument("--page", type=int, default=1, help="1-based page number")
    tickets_list.add_argument("--page-size", type=int, help="Rows per page (defaults to config)")
    tickets_list.add_argument("--sort", choices=_SORT_CHOICES, help="Sort column")
    tickets_list.add_argument(
        "--ascending", action="store_true", help="Sort ascending instead of descending"
    )

    tickets_show = tickets_sub.add_parser("show", help="Show a ticket and its activity")
    tickets_show.add_argument("ticket_id", type=str)

    tickets_create = tickets_sub.add_parser("create", help="Create a ticket")
    tickets_create.add_argument("--external-id", type=str, required=True)
    tickets_create.add_argument("--title", type=str, required=True)
    tickets_create.add_argument("--assignee", type=str, required=True)
    tickets_create.add_argument("--category", choices=_CATEGORY_CHOICES, required=True)
    tickets_create.add_argument(
        "--status", choices=_STATUS_CHOICES, default=TicketStatus.ASSIGNED.value
    )
    tickets_create.add_argument("--notes", type=str)
    tickets_create.add_argument(
        "--add-to-shift",
        action="store_true",
        help="Also add the ticket to the signed-in user's active shift",
    )
    tickets_create.add_argument("--priority", type=int, default=0, help="Priority in the shift")

    tickets_status = tickets_sub.add_parser("set-status", help="Change a ticket's status")
    tickets_status.add_argument("ticket_id", type=str)
    tickets_status.add_argument("status", choices=_STATUS_CHOICES)

    tickets_import = tickets_sub.add_parser("import", help="Upsert tickets from a CSV file")
    tickets_import.add_argument("path", type=Path)

    comments = subparsers.add_parser("comments", help="Ticket comment commands")
    comments_sub = comments.add_subparsers(dest="comments_command", required=True)
    comments_list = comments_sub.add_parser("list", help="List a ticket's comments")
    comments_list.add_argument("ticket_id", type=str)
    comments_add = comments_sub.add_parser("add", help="Comment on a ticket")
    comments_add.add_argument("ticket_id", type=str)
    comments_add.add_argument("content", type=str)

    shift = subparsers.add_parser("shift", help="Active shift commands")
    shift_sub = shift.add_subparsers(dest="shift_command", required=True)
    shift_sub.add_parser("status", help="Show the active shift")
    shift_start = shift_sub.add_parser("start", help="Start a shift")
    shift_start.add_argument("--notes", type=str)
    shift_end = shift_sub.add_parser("end", help="End the active shift")
    shift_end.add_argument("--notes", type=str)
    shift_add = shift_sub.add_parser("add", help="Add a ticket to the active shift")
    shift_add.add_argument("ticket_id", type=str)
    shift_add.add_argument("--priority", type=int, default=0)
    shift_add.add_argument("--notes", type=str)
    shift_toggle = shift_sub.add_parser("toggle", help="Toggle a link's completion")
    shift_toggle.add_argument("link_id", type=str)
    shift_priority = shift_sub.add_parser("priority", help="Change a link's priority")
    shift_priority.add_argument("link_id", type=str)
    shift_priority.add_argument("priority", type=int)
    shift_remove = shift_sub.add_parser("remove", help="Remove a ticket from the shift")
    shift_remove.add_argument("link_id", type=str)
    shift_remove.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    shift_sub.add_parser("reconcile", help="Bring link completion in line with tickets")
    shift_history = shift_sub.add_parser("history", help="List recent shifts")
    shift_history.add_argument("--limit", type=int, help="Number of shifts (defaults to config)")
    shift_sub.add_parser("watch", help="Follow the active shift until interrupted")

    return parser.parse_args(list(argv))


def _validate_args(args: argparse.Namespace) -> None:
    if args.command == "tickets" and args.tickets_command == "list":
        if args.page < 1:
            raise ValueError("--page must be at least 1")
        if args.page_size is not None and args.page_size < 1:
            raise ValueError("--page-size must be at least 1")
    if args.command == "shift" and args.shift_command == "history":
        if args.limit is not None and args.limit < 1:
            raise ValueError("--limit must be at least 1")


def _format_ticket(ticket: Ticket) -> str:
    return (
        f"{ticket.id}  {ticket.external_id:<14} {ticket.status.label:<12} "
        f"{ticket.category.label:<11} {ticket.assignee:<20} {ticket.title}"
    )


def _format_link(link: ShiftTicket) -> str:
    mark = "x" if link.completed else " "
    ticket = link.ticket
    label = f"{ticket.external_id} {ticket.title} ({ticket.status.label})" if ticket else "?"
    return f"[{mark}] {link.id}  p{link.priority}  {label}"


def _format_snapshot(snapshot: ShiftSnapshot) -> str:
    if snapshot.shift is None:
        lines = ["No active shift"]
        if snapshot.ended_shift is not None:
            lines.append(
                f"Last shift {snapshot.ended_shift.shift_date.isoformat()} "
                f"lasted {snapshot.duration}"
            )
        return "\n".join(lines)
    shift = snapshot.shift
    lines = [
        f"Shift {shift.id} ({shift.shift_date.isoformat()}) running for {snapshot.duration}",
        f"{snapshot.completed_count}/{snapshot.total_count} completed "
        f"({snapshot.completion_rate}%)",
    ]
    lines.extend(_format_link(link) for link in snapshot.links)
    return "\n".join(lines)


async def _confirm_removal(link: ShiftTicket) -> bool:
    label = link.ticket.external_id if link.ticket else link.ticket_id
    # prompt off the loop so the session worker and change delivery keep running
    answer = await asyncio.to_thread(input, f"Remove {label} from the shift? [y/N] ")
    return answer.strip().lower() in {"y", "yes"}


async def _require_session(services: Services) -> str:
    await services.auth.initialize()
    return services.auth.user_id


async def _run_login(services: Services, args: argparse.Namespace) -> None:
    password = args.password if args.password is not None else getpass("Password: ")
    session = await services.auth.sign_in(args.email, password)
    print(f"Signed in as {session.email}")


async def _run_tickets(services: Services, args: argparse.Namespace) -> None:
    command = args.tickets_command
    if command == "list":
        request = TicketListRequest(
            query=args.query,
            status=TicketStatus(args.status) if args.status else None,
            category=TicketCategory(args.category) if args.category else None,
            assignee=args.assignee,
            page=args.page,
            page_size=args.page_size or services.listing.repository_page_size,
            sort_by=args.sort,
            descending=not args.ascending,
        )
        page = await services.tickets.list(request)
        for ticket in page.tickets:
            print(_format_ticket(ticket))
        print(f"Page {page.page}/{page.page_count} ({page.total} tickets)")
    elif command == "show":
        await _require_session(services)
        view = services.ticket_detail(args.ticket_id)
        try:
            ticket = await view.load()
            if ticket is None:
                raise ValidationError(f"Ticket {args.ticket_id} not found")
            print(_format_ticket(ticket))
            if ticket.notes:
                print(f"Notes: {ticket.notes}")
            for activity in view.activities:
                author = f" {activity.author}:" if activity.author else ""
                print(f"{activity.at.isoformat(timespec='minutes')}{author} {activity.text}")
        finally:
            view.close()
    elif command == "create":
        draft = TicketDraft(
            external_id=args.external_id,
            title=args.title,
            assignee=args.assignee,
            category=TicketCategory(args.category),
            status=TicketStatus(args.status),
            notes=args.notes,
        )
        shift_id = None
        if args.add_to_shift:
            user_id = await _require_session(services)
            shift = await services.shifts.get_active(user_id)
            if shift is None:
                raise ValidationError("No active shift to add the ticket to")
            shift_id = shift.id
        created = await create_ticket(services, draft, shift_id=shift_id, priority=args.priority)
        print(_format_ticket(created.ticket))
        if created.link is not None:
            print(f"Added to shift as {created.link.id}")
    elif command == "set-status":
        ticket = await services.tickets.set_status(args.ticket_id, TicketStatus(args.status))
        print(_format_ticket(ticket))
    elif command == "import":
        written = await import_tickets_csv(services, args.path)
        print(f"Imported {written} tickets")
    else:
        raise ValueError(f"Unsupported tickets command: {command}")


async def _run_comments(services: Services, args: argparse.Namespace) -> None:
    command = args.comments_command
    if command == "list":
        for comment in await services.comments.list(args.ticket_id):
            stamp = comment.created_at.isoformat(timespec="minutes")
            print(f"{stamp} {comment.author}: {comment.content}")
    elif command == "add":
        author = await _require_session(services)
        comment = await services.comments.create(args.ticket_id, author, args.content)
        print(f"Posted comment {comment.id}")
    else:
        raise ValueError(f"Unsupported comments command: {command}")


async def _watch(session: ActiveShiftSession) -> None:
    def show(snapshot: ShiftSnapshot) -> None:
        print(_format_snapshot(snapshot))
        print()

    remove = session.add_listener(show)
    try:
        show(session.snapshot)
        await asyncio.Event().wait()
    finally:
        remove()


async def _run_shift(services: Services, args: argparse.Namespace) -> None:
    command = args.shift_command
    user_id = await _require_session(services)
    if command == "history":
        limit = args.limit or services.sync.shift_history_limit
        for shift in await services.shifts.list_for_user(user_id, limit=limit):
            state = "active" if shift.is_active else "ended"
            print(f"{shift.shift_date.isoformat()}  {shift.id}  {state}")
        return

    async with services.active_shift() as session:
        if command == "start":
            await session.start(args.notes)
        elif command == "end":
            await session.end(args.notes)
        elif command == "add":
            await session.add_link(args.ticket_id, args.priority, args.notes)
        elif command == "toggle":
            await session.toggle_complete(args.link_id)
        elif command == "priority":
            await session.set_priority(args.link_id, args.priority)
        elif command == "remove":
            confirm = (lambda _link: True) if args.yes else _confirm_removal
            if not await session.remove_link(args.link_id, confirm):
                print("Kept the ticket in the shift")
        elif command == "reconcile":
            written = await session.reconcile_now()
            print(f"Reconciled {written} links")
        elif command == "watch":
            await _watch(session)
            return
        elif command != "status":
            raise ValueError(f"Unsupported shift command: {command}")
        await session.settle()
        print(_format_snapshot(session.snapshot))


async def _dispatch(services: Services, args: argparse.Namespace) -> None:
    try:
        if args.command == "login":
            await _run_login(services, args)
        elif args.command == "logout":
            await services.auth.initialize()
            await services.auth.sign_out()
            print("Signed out")
        elif args.command == "whoami":
            print(await _require_session(services))
        elif args.command == "tickets":
            await _run_tickets(services, args)
        elif args.command == "comments":
            await _run_comments(services, args)
        elif args.command == "shift":
            await _run_shift(services, args)
        else:
            raise ValueError(f"Unsupported command: {args.command}")
    finally:
        await services.aclose()


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args: argparse.Namespace
    try:
        parsed_args = _parse_args(args_list)
        configure_logging(verbose=parsed_args.verbose)
        _validate_args(parsed_args)
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        services = build_services(database_uri=parsed_args.database_uri)
        asyncio.run(_dispatch(services, parsed_args))
    except NotSignedInError:
        log.error("Not signed in; run `shiftdesk login` first")  # noqa: TRY400
        sys.exit(1)
    except ValueError:
        log.exception("Invalid input")
        sys.exit(2)
    except Exception:
        log.exception("Command failed")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def _use_environment_collation() -> None:
    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error as exc:
        log.warning("Keeping C collation, environment locale is unusable: %s", exc)


def run() -> None:
    load_dotenv()
    _use_environment_collation()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
