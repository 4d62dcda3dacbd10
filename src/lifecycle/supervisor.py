"""
Lifecycle supervisor: owns the listener and decides how the process ends.

Reacts to three process-level events, each terminal:

- termination signal (SIGTERM, SIGINT): drain, exit 0
- unhandled rejection (a future/task whose exception nobody retrieved):
  drain, exit 1
- uncaught synchronous fault (threading excepthook, a raising event-loop
  callback, an exception escaping run() into the entrypoint): exit 1
  immediately, no drain

The first trigger wins. Later graceful triggers are ignored; a synchronous
fault always exits at once, even in the middle of a drain.
"""

import asyncio
import os
import signal
import threading
from typing import Any, Callable, Dict, Optional

from config.settings import ServerSettings
from lifecycle.errors import BindError, StartupError
from lifecycle.listen_handle import ListenHandle
from lifecycle.shutdown_policy import EXIT_FAILURE, policy_for, ShutdownPolicy
from models.enums import ShutdownTrigger, SupervisorState
from utils.logger import get_logger, LogCategory

log = get_logger().for_category(LogCategory.LIFECYCLE)
shutdown_log = log.with_category(LogCategory.SHUTDOWN)
system_log = log.with_category(LogCategory.SYSTEM)

BANNER_RULE = "=" * 40

HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def describe_error(error: Optional[BaseException]) -> str:
    """The fault's message, falling back to its type for message-less errors."""
    if error is None:
        return "unknown error"
    return str(error) or type(error).__name__


class LifecycleSupervisor:
    """
    Serves the application and enforces the shutdown policy.

    Example:
        supervisor = LifecycleSupervisor(app, settings)
        exit_code = asyncio.run(supervisor.run())
        sys.exit(exit_code)

    The graceful paths end by returning the exit code from run(); the
    immediate path calls exit_process (os._exit by default, which never
    returns).
    """

    def __init__(
        self,
        app,
        settings: ServerSettings,
        *,
        exit_process: Callable[[int], Any] = os._exit,
        handle_factory: Callable[..., ListenHandle] = ListenHandle,
        handle_options: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            app: ASGI application to serve
            settings: Resolved server settings
            exit_process: Called with the exit code on the immediate path
            handle_factory: Builds the ListenHandle (replaced in tests)
            handle_options: Extra keyword arguments for handle_factory
        """
        self._app = app
        self._settings = settings
        self._exit_process = exit_process
        self._handle_factory = handle_factory
        self._handle_options = handle_options or {}

        self._handle: Optional[ListenHandle] = None
        self._state = SupervisorState.STARTING
        self._trigger: Optional[ShutdownTrigger] = None
        self._exit_code: Optional[int] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._start_finished = asyncio.Event()
        self._stopped = asyncio.Event()
        self._shutdown_task: Optional[asyncio.Task] = None

        self._installed_signals = []
        self._previous_threading_excepthook = None

    # ----------------------------------------------------------------------
    # STARTUP
    # ----------------------------------------------------------------------
    async def start(self) -> ListenHandle:
        """
        Bind the configured port, start serving and log the startup banner.

        Raises:
            BindError: Port could not be bound
            StartupError: Application failed to start
        """
        handle = self._handle_factory(
            self._app,
            host=self._settings.host,
            port=self._settings.port,
            **self._handle_options,
        )
        self._handle = handle
        try:
            await handle.listen(on_ready=self._log_banner)
        finally:
            self._start_finished.set()

        if self._state is SupervisorState.STARTING:
            self._state = SupervisorState.SERVING
        return handle

    def _log_banner(self, handle: ListenHandle) -> None:
        system_log.info(BANNER_RULE)
        system_log.info(
            "🚀 Server started successfully!",
            port=handle.port,
            url=handle.url,
            environment=self._settings.environment,
        )
        system_log.info(BANNER_RULE)
        system_log.info("Press Ctrl+C to stop the server")

    # ----------------------------------------------------------------------
    # HANDLER INSTALLATION
    # ----------------------------------------------------------------------
    def install_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        """
        Subscribe to termination signals and fault notifications.

        Registers SIGTERM and SIGINT, the loop exception handler (unhandled
        rejections, raising callbacks) and the threading excepthook.
        """
        self._loop = loop

        for sig in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                # Loops without add_signal_handler (Windows): deliver via the loop
                signal.signal(
                    sig,
                    lambda signum, frame: loop.call_soon_threadsafe(
                        self._on_signal, signal.Signals(signum)
                    ),
                )
            self._installed_signals.append(sig)

        loop.set_exception_handler(self._handle_loop_exception)

        self._previous_threading_excepthook = threading.excepthook
        threading.excepthook = self._threading_excepthook

        log.debug("Handlers installed (SIGTERM, SIGINT, loop exceptions, thread excepthook)")

    def uninstall_handlers(self) -> None:
        """Restore the previous signal dispositions and hooks."""
        loop = self._loop
        for sig in self._installed_signals:
            try:
                if loop is not None and not loop.is_closed():
                    loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, signal.SIG_DFL)
        self._installed_signals = []

        if loop is not None and not loop.is_closed():
            loop.set_exception_handler(None)

        if self._previous_threading_excepthook is not None:
            threading.excepthook = self._previous_threading_excepthook
            self._previous_threading_excepthook = None

    # ----------------------------------------------------------------------
    # EVENT SOURCES
    # ----------------------------------------------------------------------
    def _on_signal(self, sig: signal.Signals) -> None:
        self.trigger_shutdown(ShutdownTrigger.SIGNAL, reason=sig.name)

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        """
        asyncio exception handler.

        - 'future' or 'task' in context: a task/future failed and its
          exception was never retrieved (unhandled rejection)
        - 'handle' in context: a scheduled callback raised (synchronous fault)
        - anything else was already handled by the library that reported it
        """
        error = context.get("exception")
        message = context.get("message", "Unhandled exception in event loop")

        if error is None:
            log.warn(f"Event loop: {message}")
            return

        if "future" in context or "task" in context:
            self.trigger_shutdown(ShutdownTrigger.UNHANDLED_REJECTION, error)
        elif "handle" in context:
            self.trigger_shutdown(ShutdownTrigger.UNCAUGHT_EXCEPTION, error)
        else:
            log.error(f"Event loop: {message}: {describe_error(error)}")

    def _threading_excepthook(self, args) -> None:
        if args.exc_type is SystemExit:
            return
        self.handle_uncaught_exception(args.exc_value)

    # ----------------------------------------------------------------------
    # POLICY
    # ----------------------------------------------------------------------
    def trigger_shutdown(
        self,
        trigger: ShutdownTrigger,
        error: Optional[BaseException] = None,
        *,
        reason: Optional[str] = None,
    ) -> None:
        """
        Apply the shutdown policy for trigger.

        Graceful triggers schedule the drain on the event loop and return;
        the immediate trigger exits the process from here.
        """
        policy = policy_for(trigger)

        if not policy.drain:
            self.handle_uncaught_exception(error)
            return

        if self._state in (SupervisorState.STOPPING, SupervisorState.STOPPED):
            shutdown_log.warn(
                f"Shutdown already in progress, ignoring {reason or trigger.name}",
                first_trigger=self._trigger.name if self._trigger else "unknown",
            )
            if error is not None:
                shutdown_log.error(f"❌ Unhandled error (future): {describe_error(error)}")
            return

        self._trigger = trigger
        self._state = SupervisorState.STOPPING

        if trigger is ShutdownTrigger.SIGNAL:
            shutdown_log.warn(f"⚠️  {reason or 'Termination signal'} received. Shutting down server gracefully...")
        else:
            shutdown_log.error(f"❌ Unhandled error (future): {describe_error(error)}")
            shutdown_log.error("Shutting down server safely...")

        loop = self._loop or asyncio.get_running_loop()
        self._shutdown_task = loop.create_task(
            self._drain_and_exit(trigger, policy), name="GracefulShutdown"
        )

    async def _drain_and_exit(self, trigger: ShutdownTrigger, policy: ShutdownPolicy) -> None:
        # A trigger during startup waits for the listener to exist
        await self._start_finished.wait()

        exit_code = policy.exit_code
        drained = True
        if self._handle is not None:
            try:
                drained = await self._handle.close(timeout=self._settings.drain_timeout)
            except Exception as e:
                shutdown_log.error(f"Error while closing listener: {describe_error(e)}", exc_info=e)
                drained = False

        if not drained:
            shutdown_log.error("❌ Listener did not drain cleanly, in-flight requests were cut off")
            exit_code = EXIT_FAILURE
        elif trigger is ShutdownTrigger.SIGNAL:
            shutdown_log.info("✅ Server shut down successfully")
        else:
            shutdown_log.info("Listener closed", exit_code=exit_code)

        self._finish(exit_code)

    def handle_uncaught_exception(self, error: Optional[BaseException]) -> None:
        """
        Immediate path: log the fault and exit with code 1 without draining.

        In-flight connections are abandoned. Bind and startup failures get
        their own message but take the same path.
        """
        if isinstance(error, BindError):
            system_log.error(f"❌ Port {error.port} unavailable: {describe_error(error)}")
        elif isinstance(error, StartupError):
            system_log.error(f"❌ Server failed to start: {describe_error(error)}", exc_info=error)
        else:
            system_log.error(f"❌ Uncaught exception: {describe_error(error)}", exc_info=error)
        system_log.error("Shutting down server immediately...")

        if self._trigger is None:
            self._trigger = ShutdownTrigger.UNCAUGHT_EXCEPTION
        if self._handle is not None:
            self._handle.abandon()
        self._exit_code = EXIT_FAILURE
        self._state = SupervisorState.STOPPED

        log.flush()
        self._exit_process(EXIT_FAILURE)
        # Reached only when exit_process is a non-exiting stub
        self._stopped.set()

    def _finish(self, exit_code: int) -> None:
        if self._state is SupervisorState.STOPPED:
            return
        self._exit_code = exit_code
        self._state = SupervisorState.STOPPED
        self._stopped.set()

    # ----------------------------------------------------------------------
    # RUN
    # ----------------------------------------------------------------------
    async def wait_stopped(self) -> int:
        """
        Wait for a shutdown to complete, or for the server to die on its own.

        A serve task that ends while still serving is a failure nobody was
        waiting on, so it takes the unhandled-rejection path.
        """
        while not self._stopped.is_set():
            serve_task = self._handle.task if self._handle is not None else None
            if serve_task is None or self._state is not SupervisorState.SERVING:
                await self._stopped.wait()
                break

            stopped_waiter = asyncio.create_task(self._stopped.wait())
            try:
                done, _ = await asyncio.wait(
                    {stopped_waiter, serve_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                if not stopped_waiter.done():
                    stopped_waiter.cancel()

            if serve_task in done and self._state is SupervisorState.SERVING:
                error = None if serve_task.cancelled() else serve_task.exception()
                if error is None:
                    error = StartupError("Application server stopped unexpectedly")
                self.trigger_shutdown(ShutdownTrigger.UNHANDLED_REJECTION, error)

        return self._exit_code if self._exit_code is not None else EXIT_FAILURE

    async def run(self) -> int:
        """
        Install handlers, start serving and wait for the shutdown policy to
        finish. Returns the process exit code of the graceful paths.
        """
        self.install_handlers(asyncio.get_running_loop())
        try:
            await self.start()
            return await self.wait_stopped()
        finally:
            self.uninstall_handlers()

    # ----------------------------------------------------------------------
    # PROPERTIES
    # ----------------------------------------------------------------------
    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def trigger(self) -> Optional[ShutdownTrigger]:
        return self._trigger

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    @property
    def handle(self) -> Optional[ListenHandle]:
        return self._handle

    @property
    def shutdown_task(self) -> Optional[asyncio.Task]:
        return self._shutdown_task
