"""Configuration loading and the pre-shared key."""

from insideout_monitor.config.loader import (
    AlertBehavior,
    AlertingConfig,
    Config,
    ConfigError,
    ServerConfig,
    StorageConfig,
    WebhookSink,
    default_config,
    load_config,
    load_shared_key,
)

__all__ = [
    "AlertBehavior",
    "AlertingConfig",
    "Config",
    "ConfigError",
    "ServerConfig",
    "StorageConfig",
    "WebhookSink",
    "default_config",
    "load_config",
    "load_shared_key",
]
