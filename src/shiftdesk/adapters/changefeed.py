"""In-process change feed shared by store adapters that publish their own mutations."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shiftdesk.domain.ports.query import Eq
    from shiftdesk.domain.ports.store import ChangeCallback, ChangeEvent, Unsubscribe

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Subscription:
    table: str
    callback: ChangeCallback
    where: Eq | None

    def accepts(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        if self.where is None:
            return True
        for payload in (event.new, event.old):
            if payload is not None and payload.get(self.where.column) == self.where.value:
                return True
        return False


class ChangeFeed:
    """Fan committed row changes out to table subscribers.

    Inside a running event loop callbacks are scheduled with ``call_soon`` so a
    mutation never re-enters its subscribers; without a loop they run inline.
    Exceptions raised by a subscriber are logged and do not reach the publisher.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[int, _Subscription] = {}
        self._ids = itertools.count(1)

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        where: Eq | None = None,
    ) -> Unsubscribe:
        subscription_id = next(self._ids)
        self._subscriptions[subscription_id] = _Subscription(table, callback, where)
        log.debug("Subscribed #%s to %s changes (where=%s)", subscription_id, table, where)

        def unsubscribe() -> None:
            if self._subscriptions.pop(subscription_id, None) is not None:
                log.debug("Unsubscribed #%s from %s changes", subscription_id, table)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> None:
        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        for subscription_id, subscription in list(self._subscriptions.items()):
            if not subscription.accepts(event):
                continue
            if loop is None:
                self._deliver(subscription_id, event)
            else:
                loop.call_soon(self._deliver, subscription_id, event)

    def publish_all(self, events: list[ChangeEvent]) -> None:
        for event in events:
            self.publish(event)

    def _deliver(self, subscription_id: int, event: ChangeEvent) -> None:
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            return
        try:
            subscription.callback(event)
        except Exception:
            log.exception(
                "Change subscriber #%s failed on %s %s", subscription_id, event.type, event.table
            )


__all__ = ["ChangeFeed"]
