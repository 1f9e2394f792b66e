"""Reading settings from environment variables."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from .errors import ConfigurationError, MissingConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


def _env_value(name: str) -> str | None:
    value = (os.getenv(name) or "").strip()
    return value or None


def require_env_vars(names: Sequence[str]) -> dict[str, str]:
    """Return the stripped values of ``names``; blank counts as missing."""

    values = {name: _env_value(name) for name in names}
    missing = [name for name, value in values.items() if value is None]
    if missing:
        raise MissingConfigurationError(missing)
    return {name: value for name, value in values.items() if value is not None}


def require_env_var(name: str) -> str:
    return require_env_vars([name])[name]


def _env_number[N: (int, float)](
    name: str, default: N, parse: Callable[[str], N], kind: str
) -> N:
    raw = _env_value(name)
    if raw is None:
        return default
    try:
        return parse(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be {kind}, got {raw!r}") from exc


def env_float(name: str, default: float) -> float:
    return _env_number(name, default, float, "a number")


def env_int(name: str, default: int) -> int:
    return _env_number(name, default, int, "an integer")
