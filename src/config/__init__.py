"""
Server configuration
"""

from .settings import (
    ConfigError,
    ServerSettings,
    DEFAULT_PORT,
    DEFAULT_ENVIRONMENT,
    load_env_file,
    load_settings,
    resolve_port,
    resolve_environment,
)

__all__ = [
    "ConfigError",
    "ServerSettings",
    "DEFAULT_PORT",
    "DEFAULT_ENVIRONMENT",
    "load_env_file",
    "load_settings",
    "resolve_port",
    "resolve_environment",
]
