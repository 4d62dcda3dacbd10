"""
Port utilities for binding the listening socket.

Provides PortManager singleton for:
1. Binding the server socket ourselves, so a bind failure surfaces as a
   BindError instead of uvicorn's sys.exit(1) inside the serve task
2. Port availability checking
3. Finding the process holding a port (diagnostics only, nothing is killed)

Usage:
    sock = PortManager.instance().bind("0.0.0.0", 3000)
"""

import errno
import socket
import subprocess
from typing import Optional
from utils.logger import get_logger, LogCategory
from lifecycle.errors import BindError

log = get_logger().for_category(LogCategory.SERVER)


class PortManager:
    """
    Singleton for binding sockets and diagnosing busy ports.
    """

    _instance: Optional["PortManager"] = None

    @classmethod
    def instance(cls) -> "PortManager":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def bind(self, host: str, port: int, backlog: int = 2048) -> socket.socket:
        """
        Create, bind and start listening on a TCP socket.

        Args:
            host: Address to bind (IPv4 or IPv6 literal, or hostname)
            port: Port to bind (0 picks an ephemeral port)
            backlog: Listen backlog handed to the kernel

        Returns:
            Listening socket, ready to be handed to uvicorn

        Raises:
            BindError: If the address cannot be bound
        """
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(backlog)
        except OSError as e:
            sock.close()
            pid = None
            if e.errno == errno.EADDRINUSE and port:
                pid = self.find_process_on_port(port)
            reason = e.strerror or str(e)
            log.debug(f"Failed to bind {host}:{port}", reason=reason, pid=pid if pid else "unknown")
            raise BindError(host, port, reason, pid) from e

        sock.set_inheritable(True)
        bound_port = sock.getsockname()[1]
        log.debug(f"Socket bound on {host}:{bound_port}")
        return sock

    def is_port_in_use(self, port: int, host: str = "0.0.0.0") -> bool:
        """
        Check if a port is currently in use.

        Args:
            port: Port number to check (0-65535)
            host: Host address (default: 0.0.0.0 for any interface)

        Returns:
            True if port is in use, False if available
        """
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind((host, port))
                return False  # Successfully bound = port is free
            except OSError:
                return True  # Binding failed = port in use

    def find_process_on_port(self, port: int) -> Optional[int]:
        """
        Find process ID (PID) using a specific port.

        Tries `lsof` first, then `fuser`. Best effort: returns None when
        neither tool is installed or the owner is not visible to us.

        Args:
            port: Port number to check

        Returns:
            PID if found, None otherwise
        """
        for cmd in (["lsof", "-ti", f"tcp:{port}"], ["fuser", f"{port}/tcp"]):
            try:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=1
                )
            except (subprocess.TimeoutExpired, FileNotFoundError):
                continue
            if result.returncode == 0 and result.stdout.strip():
                try:
                    return int(result.stdout.strip().split()[0])
                except (ValueError, IndexError):
                    pass
        return None
