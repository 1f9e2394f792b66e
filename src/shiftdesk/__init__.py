"""Shift and ticket tracking with automatic completion reconciliation."""

from __future__ import annotations

from importlib import metadata

try:
    __version__ = metadata.version("shiftdesk")
except metadata.PackageNotFoundError:
    __version__ = "0.0.0+local"

__all__ = ["__version__"]
