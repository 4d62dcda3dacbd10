"""
server.py — Process entry point
-------------------------------

Responsible for:
- loading .env and resolving settings
- importing the application (APP, default api.main:app)
- starting the listener under the lifecycle supervisor
- turning the supervisor's decision into the process exit code

Run with `python -m server` (from src/) or the `graceful-server` script.
"""

import sys

# ---------------------------------------------------------------------------
# UTF-8 ENCODING FIX (banner and log symbols)
# ---------------------------------------------------------------------------

if hasattr(sys.stdout, 'reconfigure') and sys.stdout.encoding and sys.stdout.encoding.upper() != 'UTF-8':
    sys.stdout.reconfigure(encoding='utf-8')  # type: ignore
if hasattr(sys.stderr, 'reconfigure') and sys.stderr.encoding and sys.stderr.encoding.upper() != 'UTF-8':
    sys.stderr.reconfigure(encoding='utf-8')  # type: ignore

import asyncio

from uvicorn.importer import ImportFromStringError, import_from_string

from config import ConfigError, load_env_file, load_settings
from lifecycle import LifecycleSupervisor
from utils.logger import get_logger, configure_logger
from models.enums import LogCategory, LogLevel

log = get_logger().for_category(LogCategory.SYSTEM)

# uvicorn takes the standard logging level names
UVICORN_LOG_LEVELS = {
    LogLevel.DEBUG: "debug",
    LogLevel.INFO: "info",
    LogLevel.WARN: "warning",
    LogLevel.ERROR: "error",
}


def load_app(import_path: str):
    """
    Import the ASGI application named by "module:attribute".

    Raises:
        ImportFromStringError: If the module or attribute cannot be found
    """
    return import_from_string(import_path)


def main() -> int:
    """Resolve settings, serve until the shutdown policy ends the process."""
    load_env_file()

    try:
        settings = load_settings()
    except ConfigError as e:
        log.error(f"❌ Configuration error: {e}")
        return 1

    configure_logger(settings.log_level, use_colors=settings.use_colors)

    try:
        app = load_app(settings.app)
    except ImportFromStringError as e:
        log.error(f"❌ Cannot load application '{settings.app}': {e}")
        return 1

    supervisor = LifecycleSupervisor(
        app,
        settings,
        handle_options={"log_level": UVICORN_LOG_LEVELS[settings.log_level]},
    )
    try:
        return asyncio.run(supervisor.run())
    except KeyboardInterrupt:
        # Ctrl+C before the signal handlers were installed
        log.warn("Keyboard interrupt received")
        return 0
    except Exception as e:
        # Bind/startup failures and anything else escaping the event loop
        supervisor.handle_uncaught_exception(e)
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
