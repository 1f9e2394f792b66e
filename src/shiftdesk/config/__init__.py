"""Application configuration helpers."""

from __future__ import annotations

from .backend import HostedBackendConfig, get_hosted_backend_config, hosted_backend_configured
from .env import require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import NO_RETRIES, READ_RETRIES, RateLimit, ResilienceConfig, RetryPolicy
from .listing import ListingConfig, get_listing_config
from .logging import configure_logging
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config
from .sync import SyncConfig, get_sync_config

__all__ = [
    "NO_RETRIES",
    "READ_RETRIES",
    "ConfigurationError",
    "DatabaseConfig",
    "HostedBackendConfig",
    "ListingConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "SyncConfig",
    "configure_logging",
    "get_database_config",
    "get_hosted_backend_config",
    "get_listing_config",
    "get_storage_config",
    "get_sync_config",
    "hosted_backend_configured",
    "require_env_var",
    "require_env_vars",
]
