"""Timing defaults for the active shift reconciliation loop."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int
from .errors import ConfigurationError

DEFAULT_RECONCILE_DEBOUNCE_SECONDS = 0.5
DEFAULT_DURATION_TICK_SECONDS = 60.0
DEFAULT_DAY_START_HOUR = 7
DEFAULT_SHIFT_HISTORY_LIMIT = 30


@dataclass(frozen=True, slots=True)
class SyncConfig:
    reconcile_debounce_seconds: float = DEFAULT_RECONCILE_DEBOUNCE_SECONDS
    duration_tick_seconds: float = DEFAULT_DURATION_TICK_SECONDS
    day_start_hour: int = DEFAULT_DAY_START_HOUR
    shift_history_limit: int = DEFAULT_SHIFT_HISTORY_LIMIT


def get_sync_config() -> SyncConfig:
    day_start_hour = env_int("SHIFTDESK_DAY_START_HOUR", DEFAULT_DAY_START_HOUR)
    if not 0 <= day_start_hour <= 23:
        raise ConfigurationError("SHIFTDESK_DAY_START_HOUR must be between 0 and 23")
    return SyncConfig(
        reconcile_debounce_seconds=env_float(
            "SHIFTDESK_RECONCILE_DEBOUNCE_SECONDS", DEFAULT_RECONCILE_DEBOUNCE_SECONDS
        ),
        duration_tick_seconds=env_float(
            "SHIFTDESK_DURATION_TICK_SECONDS", DEFAULT_DURATION_TICK_SECONDS
        ),
        day_start_hour=day_start_hour,
        shift_history_limit=env_int("SHIFTDESK_SHIFT_HISTORY_LIMIT", DEFAULT_SHIFT_HISTORY_LIMIT),
    )
