import asyncio
from typing import Callable, List, Optional

import pytest

from config.settings import ServerSettings
from lifecycle.listen_handle import local_url
from lifecycle.supervisor import LifecycleSupervisor


class FakeListenHandle:
    """
    Stand-in for ListenHandle.

    Counts close() calls without guarding against repeats, so the tests see
    exactly how often the supervisor asked for a close.
    """

    def __init__(
        self,
        app,
        host: str = "0.0.0.0",
        port: int = 3000,
        *,
        listen_delay: float = 0.0,
        listen_error: Optional[BaseException] = None,
        drain_delay: float = 0.0,
        drained: bool = True,
        serve_coro_factory: Optional[Callable] = None,
    ):
        self.app = app
        self.host = host
        self.port = port
        self.listen_delay = listen_delay
        self.listen_error = listen_error
        self.drain_delay = drain_delay
        self.drained = drained
        self.serve_coro_factory = serve_coro_factory

        self.task: Optional[asyncio.Task] = None
        self.ready_calls = 0
        self.close_calls = 0
        self.close_completed = False
        self.abandoned = False

    @property
    def url(self) -> str:
        return local_url(self.host, self.port)

    async def listen(self, on_ready=None):
        await asyncio.sleep(self.listen_delay)
        if self.listen_error is not None:
            raise self.listen_error
        if self.serve_coro_factory is not None:
            self.task = asyncio.create_task(self.serve_coro_factory())
        self.ready_calls += 1
        if on_ready is not None:
            on_ready(self)
        return self

    async def close(self, timeout=None):
        self.close_calls += 1
        await asyncio.sleep(self.drain_delay)
        self.close_completed = True
        return self.drained

    def abandon(self):
        self.abandoned = True


class ExitRecorder:
    """exit_process stub that records codes instead of exiting."""

    def __init__(self):
        self.codes: List[int] = []

    def __call__(self, code: int) -> None:
        self.codes.append(code)


@pytest.fixture
def exit_recorder():
    return ExitRecorder()


@pytest.fixture
def settings():
    return ServerSettings(host="0.0.0.0", port=3000, environment="test", drain_timeout=5.0)


@pytest.fixture
def make_supervisor(settings, exit_recorder):
    """Build a supervisor whose listener is a FakeListenHandle."""

    def _make(settings_override: Optional[ServerSettings] = None, **handle_options):
        return LifecycleSupervisor(
            app=object(),
            settings=settings_override or settings,
            exit_process=exit_recorder,
            handle_factory=FakeListenHandle,
            handle_options=handle_options,
        )

    return _make


async def wait_for_state(supervisor, state, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while supervisor.state is not state:
        if loop.time() > deadline:
            raise AssertionError(f"supervisor stuck in {supervisor.state}, expected {state}")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_state():
    return wait_for_state
