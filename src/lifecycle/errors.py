"""
Exceptions raised while bringing the listener up.
"""

from typing import Optional


class ServerError(Exception):
    """Base class for server lifecycle errors"""


class StartupError(ServerError):
    """The application server stopped before it reported started"""


class BindError(StartupError):
    """
    The listening socket could not be bound.

    Carries the requested address and, when it could be found, the PID of
    the process currently holding the port.
    """

    def __init__(self, host: str, port: int, reason: str, pid: Optional[int] = None):
        self.host = host
        self.port = port
        self.reason = reason
        self.pid = pid
        message = f"Cannot bind {host}:{port}: {reason}"
        if pid is not None:
            message += f" (held by PID {pid})"
        super().__init__(message)
