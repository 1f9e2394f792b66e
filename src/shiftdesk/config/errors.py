"""Errors raised while reading shiftdesk settings."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """A setting is present but unusable."""


class MissingConfigurationError(ConfigurationError):
    """Required environment variables are unset or blank."""

    def __init__(self, names: list[str]) -> None:
        self.names = sorted(names)
        super().__init__(f"Missing configuration for: {', '.join(self.names)}")
