"""
Server settings

Sources, lowest to highest precedence:
- built-in defaults (port 3000, environment "development")
- optional YAML file named by SERVER_CONFIG (READ-ONLY, keys in lower case)
- process environment (a .env file is loaded into it by the entrypoint)

Settings are read once at startup. Absent or invalid values fall back to the
defaults; invalid ones log a warning so a typo in PORT is visible.
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from models.enums import LogLevel
from utils.logger import get_logger, LogCategory

log = get_logger().for_category(LogCategory.CONFIG)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_ENVIRONMENT = "development"
DEFAULT_APP = "api.main:app"
DEFAULT_DRAIN_TIMEOUT = 30.0

# Environment variable -> settings field
ENV_KEYS = {
    "HOST": "host",
    "PORT": "port",
    "APP": "app",
    "DRAIN_TIMEOUT": "drain_timeout",
    "LOG_LEVEL": "log_level",
}

# Checked in order, first non-empty wins
ENVIRONMENT_KEYS = ("APP_ENV", "NODE_ENV")

LOG_LEVEL_ALIASES = {
    "DEBUG": LogLevel.DEBUG,
    "INFO": LogLevel.INFO,
    "WARN": LogLevel.WARN,
    "WARNING": LogLevel.WARN,
    "ERROR": LogLevel.ERROR,
}


class ConfigError(Exception):
    """Settings file could not be read or holds values of the wrong type"""


class ServerSettings(BaseModel):
    """Resolved, immutable server settings."""

    model_config = ConfigDict(frozen=True)

    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    environment: str = DEFAULT_ENVIRONMENT
    app: str = DEFAULT_APP
    # None: wait for in-flight requests without a bound
    drain_timeout: Optional[float] = DEFAULT_DRAIN_TIMEOUT
    log_level: LogLevel = LogLevel.INFO
    use_colors: bool = True

    @field_validator("log_level", mode="before")
    @classmethod
    def _parse_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return LOG_LEVEL_ALIASES[value.strip().upper()]
            except KeyError:
                raise ValueError(f"unknown log level '{value}'")
        return value

    @field_validator("drain_timeout")
    @classmethod
    def _zero_means_unbounded(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value < 0:
            raise ValueError("drain_timeout must be >= 0")
        return value or None


# =========================================================================
# Value resolution (fallback to defaults on bad input)
# =========================================================================

def resolve_port(raw: Any) -> int:
    """
    Resolve the configured port.

    Returns the integer port for values in 0..65535, DEFAULT_PORT when the
    value is absent, empty or invalid.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return DEFAULT_PORT
    try:
        if isinstance(raw, bool):
            raise ValueError(raw)
        port = int(str(raw).strip())
    except ValueError:
        log.warn(f"Invalid PORT '{raw}', using default", default=DEFAULT_PORT)
        return DEFAULT_PORT
    if not 0 <= port <= 65535:
        log.warn(f"PORT {port} out of range, using default", default=DEFAULT_PORT)
        return DEFAULT_PORT
    return port


def resolve_environment(environ: Mapping[str, str], fallback: Optional[str] = None) -> str:
    """Environment label, shown verbatim in the startup banner."""
    for key in ENVIRONMENT_KEYS:
        value = environ.get(key)
        if value:
            return value
    return fallback or DEFAULT_ENVIRONMENT


def _resolve_drain_timeout(raw: Any) -> Optional[float]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return DEFAULT_DRAIN_TIMEOUT
    try:
        value = float(raw)
    except (TypeError, ValueError):
        log.warn(f"Invalid DRAIN_TIMEOUT '{raw}', using default", default=DEFAULT_DRAIN_TIMEOUT)
        return DEFAULT_DRAIN_TIMEOUT
    if value < 0:
        log.warn(f"Negative DRAIN_TIMEOUT '{raw}', using default", default=DEFAULT_DRAIN_TIMEOUT)
        return DEFAULT_DRAIN_TIMEOUT
    return value


def _resolve_log_level(raw: Any) -> LogLevel:
    if raw is None or not str(raw).strip():
        return LogLevel.INFO
    level = LOG_LEVEL_ALIASES.get(str(raw).strip().upper())
    if level is None:
        log.warn(f"Invalid LOG_LEVEL '{raw}', using INFO")
        return LogLevel.INFO
    return level


# =========================================================================
# Loading
# =========================================================================

def load_env_file(path: Union[str, Path] = ".env") -> bool:
    """
    Load a .env file into os.environ without overriding variables already set.

    Returns True if the file existed and was loaded.
    """
    env_path = Path(path)
    if not env_path.is_file():
        return False
    load_dotenv(env_path, override=False)
    log.debug(f"Loaded environment file: {env_path}")
    return True


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load the optional YAML settings file.

    Raises:
        ConfigError: If the file is missing, unparsable or not a mapping
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML parsing error in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    log.debug(f"Loaded config: {config_path}")
    return data


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    config_path: Optional[Union[str, Path]] = None,
) -> ServerSettings:
    """
    Build ServerSettings from the environment and optional YAML file.

    Args:
        environ: Variables to read (default: os.environ)
        config_path: YAML file (default: SERVER_CONFIG variable, if set)

    Raises:
        ConfigError: If the YAML file is unusable or holds wrongly typed values
    """
    environ = os.environ if environ is None else environ
    config_path = config_path or environ.get("SERVER_CONFIG") or None

    raw: Dict[str, Any] = {}
    if config_path:
        raw.update(load_config_file(config_path))

    for env_key, field in ENV_KEYS.items():
        value = environ.get(env_key)
        if value is not None and value != "":
            raw[field] = value

    values = {
        "host": raw.get("host") or DEFAULT_HOST,
        "port": resolve_port(raw.get("port")),
        "environment": resolve_environment(environ, raw.get("environment")),
        "app": raw.get("app") or DEFAULT_APP,
        "drain_timeout": _resolve_drain_timeout(raw.get("drain_timeout")),
        "log_level": _resolve_log_level(raw.get("log_level")),
        "use_colors": not environ.get("NO_COLOR"),
    }

    try:
        settings = ServerSettings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid server settings: {e}") from e

    log.debug(
        "Settings resolved",
        host=settings.host,
        port=settings.port,
        environment=settings.environment,
        app=settings.app,
        drain_timeout=settings.drain_timeout,
    )
    return settings
