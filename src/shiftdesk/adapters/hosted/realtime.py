"""Realtime change listener for the hosted backend.

The backend streams row changes over a Phoenix channel websocket. One channel is
joined for ``postgres_changes`` on every watched table and each change is
republished into a ``ChangeFeed``, next to the echoes of this client's own
writes. Subscribers already tolerate the resulting duplicates.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
from logging import getLogger
from typing import TYPE_CHECKING, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError
from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import WebSocketException

from .schema import PostgresChangesPayload, RealtimeMessage

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from contextlib import AbstractAsyncContextManager

    from shiftdesk.adapters.changefeed import ChangeFeed
    from shiftdesk.config.backend import HostedBackendConfig

log = getLogger(__name__)

REALTIME_TABLES = ("tickets", "shift_tickets", "ticket_comments")
CHANNEL_TOPIC = "realtime:shiftdesk"
PROTOCOL_VERSION = "1.0.0"
HEARTBEAT_SECONDS = 25.0
RECONNECT_SECONDS = 5.0


class RealtimeError(RuntimeError):
    """The server rejected or closed the change channel."""


class RealtimeSocket(Protocol):
    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...


type TokenProvider = Callable[[], Awaitable[str | None]]
type Connector = Callable[[str], AbstractAsyncContextManager[RealtimeSocket]]


def _default_connect(url: str) -> AbstractAsyncContextManager[RealtimeSocket]:
    return websocket_connect(url)


def realtime_socket_url(config: HostedBackendConfig) -> str:
    params = httpx.QueryParams({"apikey": config.anon_key, "vsn": PROTOCOL_VERSION})
    return f"{config.realtime_url}?{params}"


class RealtimeListener:
    """Keep one change channel open and publish what it delivers.

    The listener starts on the first ``ensure_running`` call made inside an
    event loop, reconnects after connection failures or channel errors, and
    stops on ``aclose``.
    """

    def __init__(
        self,
        config: HostedBackendConfig,
        feed: ChangeFeed,
        *,
        access_token: TokenProvider | None = None,
        tables: tuple[str, ...] = REALTIME_TABLES,
        connect: Connector = _default_connect,
        heartbeat_seconds: float = HEARTBEAT_SECONDS,
        reconnect_seconds: float = RECONNECT_SECONDS,
    ) -> None:
        self.config = config
        self._feed = feed
        self._access_token = access_token
        self._tables = tables
        self._connect = connect
        self._heartbeat_seconds = heartbeat_seconds
        self._reconnect_seconds = reconnect_seconds
        self._refs = itertools.count(1)
        self._join_ref: str | None = None
        self._task: asyncio.Task[None] | None = None
        self.joined = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def ensure_running(self) -> None:
        if self.running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("No running event loop; realtime changes start with a later subscription")
            return
        self._task = loop.create_task(self._run(), name="shiftdesk-realtime")

    async def aclose(self) -> None:
        task, self._task = self._task, None
        self.joined = False
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        url = realtime_socket_url(self.config)
        while True:
            try:
                async with self._connect(url) as socket:
                    await self._listen(socket)
            except (OSError, WebSocketException, RealtimeError) as exc:
                log.warning(
                    "Realtime connection lost (%s); reconnecting in %ss",
                    exc,
                    self._reconnect_seconds,
                )
            self.joined = False
            await asyncio.sleep(self._reconnect_seconds)

    async def _token(self) -> str:
        token = await self._access_token() if self._access_token else None
        return token or self.config.anon_key

    async def _send(
        self, socket: RealtimeSocket, topic: str, event: str, payload: dict[str, object]
    ) -> str:
        ref = str(next(self._refs))
        frame = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        await socket.send(json.dumps(frame))
        return ref

    async def _listen(self, socket: RealtimeSocket) -> None:
        loop = asyncio.get_running_loop()
        token = await self._token()
        self._join_ref = await self._send(
            socket,
            CHANNEL_TOPIC,
            "phx_join",
            {
                "config": {
                    "postgres_changes": [
                        {"event": "*", "schema": "public", "table": table}
                        for table in self._tables
                    ]
                },
                "access_token": token,
            },
        )
        deadline = loop.time() + self._heartbeat_seconds
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                await self._send(socket, "phoenix", "heartbeat", {})
                current = await self._token()
                if current != token:
                    token = current
                    await self._send(socket, CHANNEL_TOPIC, "access_token", {"access_token": token})
                deadline = loop.time() + self._heartbeat_seconds
                continue
            try:
                raw = await asyncio.wait_for(socket.recv(), remaining)
            except TimeoutError:
                continue
            self._handle(raw)

    def _handle(self, raw: str | bytes) -> None:
        try:
            message = RealtimeMessage.model_validate_json(raw)
        except PydanticValidationError:
            log.warning("Ignoring malformed realtime frame: %.200r", raw)
            return
        if message.event == "postgres_changes":
            try:
                change = PostgresChangesPayload.model_validate(message.payload).data
            except PydanticValidationError as exc:
                log.warning("Ignoring malformed change on %s: %s", message.topic, exc)
                return
            self._feed.publish(change.to_event())
        elif message.event == "phx_reply" and self._is_join_reply(message):
            if message.payload.get("status") != "ok":
                raise RealtimeError(f"Channel join rejected: {message.payload.get('response')}")
            self.joined = True
            log.info("Listening for realtime changes on %s", ", ".join(self._tables))
        elif message.event in {"phx_error", "phx_close"} and message.topic == CHANNEL_TOPIC:
            raise RealtimeError(f"Server sent {message.event} on {message.topic}")
        else:
            log.debug("Realtime %s on %s", message.event, message.topic)

    def _is_join_reply(self, message: RealtimeMessage) -> bool:
        return message.topic == CHANNEL_TOPIC and str(message.ref) == self._join_ref


__all__ = [
    "REALTIME_TABLES",
    "RealtimeError",
    "RealtimeListener",
    "RealtimeSocket",
    "TokenProvider",
    "realtime_socket_url",
]
