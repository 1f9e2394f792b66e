"""Adapters for the hosted backend: REST data API, auth API and realtime changes."""

from __future__ import annotations

from .auth import AuthenticationError, HostedAuthGateway
from .realtime import RealtimeListener
from .store import HostedAPIError, HostedRemoteStore

__all__ = [
    "AuthenticationError",
    "HostedAPIError",
    "HostedAuthGateway",
    "HostedRemoteStore",
    "RealtimeListener",
]
