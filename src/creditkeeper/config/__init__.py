"""Application configuration helpers."""

from __future__ import annotations

from .access import (
    AccessConfig,
    LedgerConfig,
    ReconcilerConfig,
    ResolverConfig,
    SignInWaitConfig,
    get_access_config,
)
from .env import (
    ConfigurationError,
    MissingConfigurationError,
    optional_env,
    optional_env_float,
    require_env_vars,
)
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .profile_api import ProfileApiConfig, get_profile_api_config
from .storage import (
    DatabaseConfig,
    LocalCacheConfig,
    StorageConfig,
    get_database_config,
    get_local_cache_config,
    get_storage_config,
)

__all__ = [
    "AccessConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "LedgerConfig",
    "LocalCacheConfig",
    "MissingConfigurationError",
    "ProfileApiConfig",
    "RateLimit",
    "ReconcilerConfig",
    "ResilienceConfig",
    "ResolverConfig",
    "RetryPolicy",
    "SignInWaitConfig",
    "StorageConfig",
    "configure_logging",
    "get_access_config",
    "get_database_config",
    "get_local_cache_config",
    "get_profile_api_config",
    "get_storage_config",
    "optional_env",
    "optional_env_float",
    "require_env_vars",
]
