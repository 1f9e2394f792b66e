"""Snapshot / apply / persist / restore helper for optimistic local edits."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = getLogger(__name__)


async def apply_optimistically[S, R](
    *,
    capture: Callable[[], S],
    apply: Callable[[], None],
    persist: Callable[[], Awaitable[R]],
    restore: Callable[[S], None],
    description: str = "change",
) -> R:
    """Apply a local change before persisting it, restoring the snapshot on failure.

    ``capture`` is taken before ``apply`` runs. When ``persist`` raises (or is
    cancelled) ``restore`` receives that exact snapshot and the error is
    re-raised to the caller.
    """

    snapshot = capture()
    apply()
    try:
        return await persist()
    except BaseException:
        log.warning("Persisting %s failed; restoring previous state", description)
        restore(snapshot)
        raise


__all__ = ["apply_optimistically"]
