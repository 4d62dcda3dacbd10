from __future__ import annotations
import asyncio
import contextlib
import socket
from typing import Callable, Generator, Optional

import uvicorn

from lifecycle.errors import StartupError
from lifecycle.port_manager import PortManager
from utils.logger import get_logger, LogCategory

log = get_logger().for_category(LogCategory.SERVER)

WILDCARD_HOSTS = ("0.0.0.0", "::", "")


def local_url(host: str, port: int) -> str:
    """URL a local client would use to reach a listener bound on host:port."""
    if host in WILDCARD_HOSTS:
        host = "localhost"
    elif ":" in host:
        host = f"[{host}]"
    return f"http://{host}:{port}"


class _SupervisedServer(uvicorn.Server):
    """uvicorn.Server that leaves signal handling to the lifecycle supervisor."""

    def install_signal_handlers(self) -> None:
        # uvicorn < 0.29
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Generator[None, None, None]:
        # uvicorn >= 0.29
        yield


class ListenHandle:
    """
    The bound network listener serving the application.

    Behaviour:
      - listen() binds the socket, launches uvicorn's serve() as a background
        task and returns once uvicorn reports it has started.
      - close() stops accepting new connections, lets in-flight requests
        finish and returns when the server has fully stopped. It runs at most
        once: later or concurrent calls wait for the same close.
      - abandon() marks the handle as given up (fatal exit path); no close is
        attempted afterwards.
    """

    # Extra time uvicorn gets to finish after force_exit before the task is cancelled
    FORCE_EXIT_GRACE = 2.0

    def __init__(
        self,
        app,
        host: str = "0.0.0.0",
        port: int = 3000,
        *,
        http: str = "auto",
        lifespan: str = "auto",
        log_level: str = "info",
        port_manager: Optional[PortManager] = None,
    ):
        self.app = app
        self.host = host
        self._requested_port = port
        self._bound_port: Optional[int] = None
        self._http = http
        self._lifespan = lifespan
        self._log_level = log_level
        self._port_manager = port_manager or PortManager.instance()

        self._socket: Optional[socket.socket] = None
        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._closed = False
        self._abandoned = False

    # ----------------------------------------------------------------------
    # INTERNAL
    # ----------------------------------------------------------------------
    def _create_server(self) -> uvicorn.Server:
        config = uvicorn.Config(
            app=self.app,
            host=self.host,
            port=self.port,
            loop="asyncio",
            http=self._http,
            lifespan=self._lifespan,
            log_level=self._log_level,
            access_log=False,
            server_header=False,
        )
        return _SupervisedServer(config)

    def _release_socket(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    # ----------------------------------------------------------------------
    # PUBLIC API
    # ----------------------------------------------------------------------
    async def listen(
        self,
        on_ready: Optional[Callable[["ListenHandle"], None]] = None,
        *,
        wait_started_timeout: float = 10.0,
    ) -> "ListenHandle":
        """
        Bind the socket and start serving.

        Args:
            on_ready: Called once with this handle after uvicorn reports started
            wait_started_timeout: Seconds to wait for the application startup

        Raises:
            BindError: If the socket cannot be bound
            StartupError: If the server stops or times out before it started
        """
        if self._serve_task is not None:
            raise RuntimeError("Listener already started")

        self._socket = self._port_manager.bind(self.host, self._requested_port)
        self._bound_port = self._socket.getsockname()[1]
        self._server = self._create_server()

        log.debug(f"Launching application server on {self.host}:{self._bound_port}")

        self._serve_task = asyncio.create_task(
            self._server.serve(sockets=[self._socket]), name="UvicornServe"
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_started_timeout
        while not self._server.started:
            if self._serve_task.done():
                self._release_socket()
                error = None if self._serve_task.cancelled() else self._serve_task.exception()
                raise StartupError(
                    f"Application server on port {self._bound_port} stopped during startup"
                ) from error
            if loop.time() > deadline:
                self._server.should_exit = True
                self._serve_task.cancel()
                await asyncio.wait({self._serve_task})
                self._release_socket()
                raise StartupError(
                    f"Application server on port {self._bound_port} did not start "
                    f"within {wait_started_timeout}s"
                )
            await asyncio.sleep(0.05)

        log.debug("Application server reported started", port=self._bound_port)

        if on_ready is not None:
            on_ready(self)
        return self

    async def close(self, timeout: Optional[float] = None) -> bool:
        """
        Stop accepting connections, drain in-flight requests, stop the server.

        Args:
            timeout: Seconds to wait for the drain (None waits indefinitely)

        Returns:
            True if every connection finished, False if the close was forced
        """
        if self._close_task is None:
            self._close_task = asyncio.create_task(self._close(timeout), name="ListenHandleClose")
        else:
            log.debug("close() already in progress, waiting for it")
        return await asyncio.shield(self._close_task)

    async def _close(self, timeout: Optional[float]) -> bool:
        if self._abandoned:
            log.debug("Listener was abandoned, skipping close")
            return False

        if self._server is None or self._serve_task is None:
            self._release_socket()
            self._closed = True
            return True

        log.debug("Closing listener (no new connections, draining in-flight requests)...")

        # uvicorn's main loop notices should_exit, closes the listening sockets,
        # closes idle keep-alive connections and waits for the rest
        self._server.should_exit = True
        drained = True

        done, _ = await asyncio.wait({self._serve_task}, timeout=timeout)
        if not done:
            drained = False
            connections = len(self._server.server_state.connections)
            log.warn(
                f"Drain timeout ({timeout}s) exceeded, forcing close",
                open_connections=connections,
            )
            self._server.force_exit = True
            done, _ = await asyncio.wait({self._serve_task}, timeout=self.FORCE_EXIT_GRACE)
            if not done:
                self._serve_task.cancel()
                await asyncio.wait({self._serve_task})

        if not self._serve_task.cancelled() and self._serve_task.exception() is not None:
            drained = False
            log.error(
                f"Application server failed while closing: {self._serve_task.exception()}",
                exc_info=self._serve_task.exception(),
            )

        self._release_socket()
        self._closed = True
        log.debug("Listener closed", drained=drained)
        return drained

    def abandon(self) -> None:
        """Give up on the listener without closing it (fatal exit path)."""
        self._abandoned = True

    # ----------------------------------------------------------------------
    # PROPERTIES
    # ----------------------------------------------------------------------
    @property
    def port(self) -> int:
        """Bound port once listening, the requested port before that."""
        return self._bound_port if self._bound_port is not None else self._requested_port

    @property
    def url(self) -> str:
        return local_url(self.host, self.port)

    @property
    def is_open(self) -> bool:
        """Serving and not yet asked to close."""
        return (
            self._serve_task is not None
            and not self._serve_task.done()
            and self._close_task is None
            and not self._abandoned
        )

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._serve_task

    @property
    def server(self) -> Optional[uvicorn.Server]:
        return self._server
