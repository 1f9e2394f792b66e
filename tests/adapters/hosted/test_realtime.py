from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx

from shiftdesk.adapters.changefeed import ChangeFeed
from shiftdesk.adapters.hosted import HostedRemoteStore, RealtimeListener
from shiftdesk.adapters.hosted.realtime import CHANNEL_TOPIC, REALTIME_TABLES
from shiftdesk.domain.ports.query import Eq
from shiftdesk.domain.ports.store import ChangeEvent, ChangeType
from tests.helpers.hosted import client_factory_for

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from shiftdesk.config import HostedBackendConfig

SOCKET_URL = "wss://backend.example.com/realtime/v1/websocket?apikey=anon-key&vsn=1.0.0"


class FakeSocket:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self._incoming: asyncio.Queue[str] = asyncio.Queue()

    def push(self, frame: str) -> None:
        self._incoming.put_nowait(frame)

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def recv(self) -> str:
        return await self._incoming.get()

    def events(self, name: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame["event"] == name]


class FakeServer:
    """Hands out one socket (or raises one error) per connection attempt."""

    def __init__(self, *attempts: FakeSocket | Exception) -> None:
        self.urls: list[str] = []
        self._attempts = list(attempts)

    @asynccontextmanager
    async def connect(self, url: str) -> AsyncIterator[FakeSocket]:
        self.urls.append(url)
        attempt = self._attempts.pop(0) if self._attempts else FakeSocket()
        if isinstance(attempt, Exception):
            raise attempt
        yield attempt


def _frame(event: str, payload: dict[str, Any], *, ref: str | None = None) -> str:
    return json.dumps({"topic": CHANNEL_TOPIC, "event": event, "payload": payload, "ref": ref})


def _join_reply(ref: str, status: str = "ok") -> str:
    return _frame("phx_reply", {"status": status, "response": {}}, ref=ref)


def _change(
    table: str, change_type: str, record: dict[str, Any], old_record: dict[str, Any] | None = None
) -> str:
    return _frame(
        "postgres_changes",
        {
            "data": {
                "schema": "public",
                "table": table,
                "type": change_type,
                "commit_timestamp": "2026-03-01T08:00:00Z",
                "record": record,
                "old_record": old_record or {},
                "errors": None,
            },
            "ids": [1],
        },
    )


async def _eventually(condition: Callable[[], bool]) -> None:
    async with asyncio.timeout(1):
        while not condition():
            await asyncio.sleep(0.005)


def test_listener_joins_channel_and_republishes_changes(
    backend_config: HostedBackendConfig,
) -> None:
    feed = ChangeFeed()
    received: list[ChangeEvent] = []

    async def access_token() -> str | None:
        return "user-token"

    async def scenario() -> tuple[FakeSocket, FakeServer, bool, bool]:
        socket = FakeSocket()
        server = FakeServer(socket)
        listener = RealtimeListener(
            backend_config, feed, access_token=access_token, connect=server.connect
        )
        feed.subscribe("tickets", received.append, where=Eq("id", "t1"))
        socket.push(_join_reply("1"))
        socket.push(_change("tickets", "UPDATE", {"id": "t2", "status": "pending"}))
        socket.push(_change("tickets", "UPDATE", {"id": "t1", "status": "resolved"}, {"id": "t1"}))
        listener.ensure_running()
        await _eventually(lambda: bool(received))
        joined = listener.joined
        await listener.aclose()
        return socket, server, joined, listener.running

    socket, server, joined, running = asyncio.run(scenario())

    assert server.urls == [SOCKET_URL]
    assert socket.sent[0] == {
        "topic": CHANNEL_TOPIC,
        "event": "phx_join",
        "payload": {
            "config": {
                "postgres_changes": [
                    {"event": "*", "schema": "public", "table": table}
                    for table in REALTIME_TABLES
                ]
            },
            "access_token": "user-token",
        },
        "ref": "1",
    }
    assert joined
    assert not running
    assert received == [
        ChangeEvent(
            "tickets", ChangeType.UPDATE, new={"id": "t1", "status": "resolved"}, old={"id": "t1"}
        )
    ]


def test_deletes_carry_only_the_key_and_malformed_frames_are_skipped(
    backend_config: HostedBackendConfig,
) -> None:
    feed = ChangeFeed()
    received: list[ChangeEvent] = []

    async def scenario() -> FakeSocket:
        socket = FakeSocket()
        listener = RealtimeListener(backend_config, feed, connect=FakeServer(socket).connect)
        feed.subscribe("shift_tickets", received.append)
        socket.push("not json")
        socket.push(_frame("postgres_changes", {"data": {"table": "shift_tickets"}}))
        socket.push(_change("shift_tickets", "DELETE", {}, {"id": "link-1"}))
        listener.ensure_running()
        await _eventually(lambda: bool(received))
        await listener.aclose()
        return socket

    socket = asyncio.run(scenario())

    assert socket.sent[0]["payload"]["access_token"] == "anon-key"
    assert received == [
        ChangeEvent("shift_tickets", ChangeType.DELETE, new=None, old={"id": "link-1"})
    ]


def test_listener_reconnects_after_refused_connection_and_rejected_join(
    backend_config: HostedBackendConfig,
) -> None:
    feed = ChangeFeed()
    received: list[ChangeEvent] = []

    async def scenario() -> tuple[FakeServer, FakeSocket, FakeSocket]:
        rejected = FakeSocket()
        accepted = FakeSocket()
        server = FakeServer(OSError("connection refused"), rejected, accepted)
        listener = RealtimeListener(
            backend_config, feed, connect=server.connect, reconnect_seconds=0
        )
        feed.subscribe("ticket_comments", received.append)
        rejected.push(_join_reply("1", status="error"))
        accepted.push(_join_reply("2"))
        accepted.push(_change("ticket_comments", "INSERT", {"id": "c1", "ticket_id": "t1"}))
        listener.ensure_running()
        await _eventually(lambda: bool(received))
        await listener.aclose()
        return server, rejected, accepted

    server, rejected, accepted = asyncio.run(scenario())

    assert server.urls == [SOCKET_URL] * 3
    assert [frame["ref"] for frame in rejected.events("phx_join")] == ["1"]
    assert [frame["ref"] for frame in accepted.events("phx_join")] == ["2"]
    assert [event.record_id for event in received] == ["c1"]


def test_heartbeats_push_a_rotated_access_token(backend_config: HostedBackendConfig) -> None:
    tokens = ["token-1"]

    async def access_token() -> str | None:
        return tokens[0]

    async def scenario() -> FakeSocket:
        socket = FakeSocket()
        listener = RealtimeListener(
            backend_config,
            ChangeFeed(),
            access_token=access_token,
            connect=FakeServer(socket).connect,
            heartbeat_seconds=0.01,
        )
        listener.ensure_running()
        await _eventually(lambda: bool(socket.events("heartbeat")))
        tokens[0] = "token-2"
        await _eventually(lambda: bool(socket.events("access_token")))
        await listener.aclose()
        return socket

    socket = asyncio.run(scenario())

    assert socket.events("heartbeat")[0]["topic"] == "phoenix"
    assert [frame["payload"] for frame in socket.events("access_token")] == [
        {"access_token": "token-2"}
    ]


def test_ensure_running_outside_an_event_loop_does_nothing(
    backend_config: HostedBackendConfig,
) -> None:
    server = FakeServer()
    listener = RealtimeListener(backend_config, ChangeFeed(), connect=server.connect)

    listener.ensure_running()

    assert not listener.running
    assert server.urls == []


def test_store_subscription_starts_listener_and_close_stops_it(
    backend_config: HostedBackendConfig,
) -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    async def scenario() -> tuple[FakeServer, bool, bool]:
        feed = ChangeFeed()
        server = FakeServer()
        listener = RealtimeListener(backend_config, feed, connect=server.connect)
        store = HostedRemoteStore(
            backend_config,
            feed=feed,
            realtime=listener,
            client_factory=client_factory_for(handler, base_url=backend_config.rest_url),
        )
        store.subscribe("tickets", lambda _event: None)
        await _eventually(lambda: bool(server.urls))
        started = listener.running
        await store.aclose()
        return server, started, listener.running

    server, started, running = asyncio.run(scenario())

    assert started
    assert not running
    assert server.urls == [SOCKET_URL]
