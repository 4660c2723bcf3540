"""Application configuration helpers."""

from __future__ import annotations

from .env import env_bool, env_float, env_int, env_str, require_env_var, require_env_vars
from .errors import ConfigurationError, InvalidConfigurationError, MissingConfigurationError
from .http_resilience import (
    CacheConfig,
    RateLimit,
    ResilienceConfig,
    RetryPolicy,
    resilience_from_env,
)
from .loader import get_loader_config
from .logging import configure_logging
from .outbox import KafkaRestConfig, OutboxConfig, get_kafka_rest_config, get_outbox_config
from .policy import OpaConfig, get_opa_config
from .storage import (
    DatabaseConfig,
    StorageConfig,
    get_database_config,
    get_database_uri,
    get_storage_config,
)

__all__ = [
    "CacheConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "InvalidConfigurationError",
    "KafkaRestConfig",
    "MissingConfigurationError",
    "OpaConfig",
    "OutboxConfig",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "configure_logging",
    "env_bool",
    "env_float",
    "env_int",
    "env_str",
    "get_database_config",
    "get_database_uri",
    "get_kafka_rest_config",
    "get_loader_config",
    "get_opa_config",
    "get_outbox_config",
    "get_storage_config",
    "require_env_var",
    "require_env_vars",
    "resilience_from_env",
]
