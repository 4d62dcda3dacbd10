"""
Enums for the server lifecycle state machine and console logging
"""

from enum import Enum, auto


class LogLevel(Enum):
    """Log severity levels"""
    DEBUG = auto()
    INFO = auto()
    WARN = auto()
    ERROR = auto()


class LogCategory(Enum):
    """Log categories for grouping related events"""
    CONFIG = auto()      # Configuration loading, validation
    SYSTEM = auto()      # Startup banner, process exit
    API = auto()         # Application handler (ASGI app)
    SERVER = auto()      # Listener bind, uvicorn serve task

    SHUTDOWN = auto()    # Drain and exit sequence
    LIFECYCLE = auto()   # Signal / fault subscriptions

    GENERAL = auto()     # Default general category


class ShutdownTrigger(Enum):
    """
    Process-level events that end the serving state.

    SIGNAL: operator asked the process to stop (SIGTERM, Ctrl+C)
    UNHANDLED_REJECTION: a future/task failed and nobody retrieved the exception
    UNCAUGHT_EXCEPTION: a synchronous error escaped all handling
    """
    SIGNAL = auto()
    UNHANDLED_REJECTION = auto()
    UNCAUGHT_EXCEPTION = auto()


class SupervisorState(Enum):
    """
    Supervisor lifecycle states

    SERVING is the only live state, STOPPED is terminal.
    """
    STARTING = auto()
    SERVING = auto()
    STOPPING = auto()
    STOPPED = auto()
