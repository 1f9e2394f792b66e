from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING

import pytest

from shiftdesk.app import build_local_services, create_ticket
from shiftdesk.config import StorageConfig, SyncConfig
from shiftdesk.ui import cli
from tests.helpers.tickets import make_draft

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from sqlalchemy.engine import Engine

    from shiftdesk.app import Services
    from tests.helpers.tickets import FixedClock

SYNC = SyncConfig(reconcile_debounce_seconds=0.01, duration_tick_seconds=3600.0)


@pytest.fixture
def make_services(
    sqlite_engine: Engine, tmp_path: Path, clock: FixedClock
) -> Callable[[], Services]:
    def factory() -> Services:
        return build_local_services(
            engine=sqlite_engine,
            storage=StorageConfig(data_dir=tmp_path),
            clock=clock,
            sync=SYNC,
        )

    return factory


@pytest.fixture
def cli_services(
    monkeypatch: pytest.MonkeyPatch, make_services: Callable[[], Services]
) -> Callable[[], Services]:
    def fake_build_services(**_: object) -> Services:
        return make_services()

    monkeypatch.setattr(cli, "build_services", fake_build_services)
    return make_services


def test_main_cli_invalid_page(cli_services: Callable[[], Services]) -> None:
    _ = cli_services
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["tickets", "list", "--page", "0"])

    assert excinfo.value.code == 2


def test_main_cli_unknown_status_is_usage_error(cli_services: Callable[[], Services]) -> None:
    _ = cli_services
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["tickets", "list", "--status", "closed"])

    assert excinfo.value.code == 2


def test_main_cli_shift_requires_sign_in(cli_services: Callable[[], Services]) -> None:
    _ = cli_services
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["shift", "status"])

    assert excinfo.value.code == 1


def test_main_cli_creates_and_lists_tickets(
    cli_services: Callable[[], Services], capsys: pytest.CaptureFixture[str]
) -> None:
    _ = cli_services
    cli.main(
        [
            "tickets",
            "create",
            "--external-id",
            "INC-42",
            "--title",
            "Core switch reboot",
            "--assignee",
            "dana",
            "--category",
            "networking",
        ]
    )
    cli.main(["tickets", "list", "--query", "core"])

    output = capsys.readouterr().out
    assert output.count("INC-42") == 2
    assert "Page 1/1 (1 tickets)" in output


def test_main_cli_imports_csv(
    cli_services: Callable[[], Services], tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _ = cli_services
    path = tmp_path / "tickets.csv"
    path.write_text(
        "external_id,ticket_name,status,assignee,cti,notes\n"
        "INC-1,Fan failure,assigned,lee,hardware,\n",
        encoding="utf-8",
    )

    cli.main(["tickets", "import", str(path)])

    assert "Imported 1 tickets" in capsys.readouterr().out


def test_main_cli_shift_flow(
    cli_services: Callable[[], Services], capsys: pytest.CaptureFixture[str]
) -> None:
    ticket = asyncio.run(create_ticket(cli_services(), make_draft("INC-9"))).ticket

    cli.main(["login", "--email", "dana@example.com", "--password", "secret"])
    cli.main(["whoami"])
    cli.main(["shift", "start", "--notes", "night shift"])
    cli.main(["shift", "add", ticket.id, "--priority", "3"])
    cli.main(["tickets", "set-status", ticket.id, "resolved"])
    cli.main(["shift", "reconcile"])

    output = capsys.readouterr().out
    assert "Signed in as dana@example.com" in output
    assert "dana@example.com\n" in output
    assert "0/0 completed (0%)" in output
    assert "0/1 completed (0%)" in output
    assert "1/1 completed (100%)" in output
    assert "[x]" in output
    assert "p3  INC-9 Switch port flapping (Resolved)" in output

    cli.main(["shift", "end"])
    cli.main(["shift", "history"])

    output = capsys.readouterr().out
    assert "No active shift" in output
    assert "ended" in output

    cli.main(["logout"])
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["shift", "status"])
    assert excinfo.value.code == 1


def test_main_cli_remove_asks_off_the_event_loop_thread(
    cli_services: Callable[[], Services],
    capsys: pytest.CaptureFixture[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    services = cli_services()

    async def seed() -> str:
        ticket = (await create_ticket(services, make_draft("INC-5"))).ticket
        shift = await services.shifts.start("dana@example.com")
        return (await services.shifts.add_link(shift.id, ticket.id)).id

    link_id = asyncio.run(seed())
    answers = iter(["n", "yes"])
    prompts: list[tuple[str, bool]] = []

    def fake_input(prompt: str) -> str:
        prompts.append((prompt, threading.current_thread() is threading.main_thread()))
        return next(answers)

    monkeypatch.setattr("builtins.input", fake_input)

    cli.main(["login", "--email", "dana@example.com", "--password", "secret"])
    cli.main(["shift", "remove", link_id])
    kept = capsys.readouterr().out
    cli.main(["shift", "remove", link_id])
    removed = capsys.readouterr().out

    assert prompts == [("Remove INC-5 from the shift? [y/N] ", False)] * 2
    assert "Kept the ticket in the shift" in kept
    assert "0/1 completed (0%)" in kept
    assert "0/0 completed (0%)" in removed
