"""Domain port definitions for adapters."""

from __future__ import annotations

from .auth import AuthGateway, AuthSession
from .query import (
    AnyContains,
    Contains,
    Embed,
    Eq,
    Filter,
    IsNull,
    OrderBy,
    QueryResult,
    Select,
)
from .store import ChangeCallback, ChangeEvent, ChangeType, RemoteStore, Row, Unsubscribe

__all__ = [
    "AnyContains",
    "AuthGateway",
    "AuthSession",
    "ChangeCallback",
    "ChangeEvent",
    "ChangeType",
    "Contains",
    "Embed",
    "Eq",
    "Filter",
    "IsNull",
    "OrderBy",
    "QueryResult",
    "RemoteStore",
    "Row",
    "Select",
    "Unsubscribe",
]
