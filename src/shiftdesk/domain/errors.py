"""Error taxonomy shared by repositories, adapters and view state."""

from __future__ import annotations


class DataError(RuntimeError):
    """Raised when the remote store rejects or fails an operation.

    Carries the store's own message text; no further classification is made.
    """


class ValidationError(ValueError):
    """Raised when a client-side precondition fails before any store call."""


class NotSignedInError(RuntimeError):
    """Raised when an operation needs an authenticated identity and none exists."""
