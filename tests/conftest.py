from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from browsermux.browser import CircuitBreaker, RetryPolicy, SessionManager
from browsermux.dispatch import Dispatcher
from browsermux.tools import build_default_registry


class FakeResponse:
    def __init__(self, status: int = 200) -> None:
        self.status = status


class FakeKeyboard:
    def __init__(self) -> None:
        self.pressed: List[str] = []

    async def press(self, key: str) -> None:
        self.pressed.append(key)


class FakePage:
    """Just enough of ``playwright.async_api.Page`` for the built-in handlers."""

    def __init__(self, *, delay: float = 0.0) -> None:
        self.url = "about:blank"
        self.delay = delay
        self.visits: List[str] = []
        self.started: List[str] = []
        self.keyboard = FakeKeyboard()
        self.html = "<html><body><p>Hello</p></body></html>"

    async def goto(self, url: str, wait_until: str = "load") -> FakeResponse:
        self.started.append(url)
        if url.startswith("hang://"):
            await asyncio.sleep(3600)
        if url.startswith("dead://"):
            raise RuntimeError("Target page, context or browser has been closed")
        if url.startswith("broken://"):
            raise RuntimeError("net::ERR_NAME_NOT_RESOLVED at " + url)
        if self.delay:
            await asyncio.sleep(self.delay)
        self.url = url
        self.visits.append(url)
        return FakeResponse()

    async def title(self) -> str:
        return f"Title of {self.url}"

    async def content(self) -> str:
        return self.html

    async def inner_text(self, selector: str) -> str:
        return "Hello"

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return {"script": script, "arg": arg}


class FakeHandle:
    def __init__(self, page: Optional[FakePage] = None) -> None:
        self.page = page or FakePage()
        self.closed = 0
        self.pings = 0
        self.responsive = True
        self.hung = False
        self._callbacks: List[Callable[[], None]] = []

    def on_exit(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    async def ping(self) -> None:
        self.pings += 1
        if self.hung:
            await asyncio.sleep(3600)
        if not self.responsive:
            raise RuntimeError("Target page, context or browser has been closed")

    def trigger_exit(self) -> None:
        for callback in list(self._callbacks):
            callback()

    async def close(self) -> None:
        self.closed += 1


class FakeLauncher:
    """Counts launch attempts; raises queued failures before succeeding."""

    def __init__(self, *, failures: Optional[List[BaseException]] = None, page_delay: float = 0.0) -> None:
        self.failures = list(failures or [])
        self.fail_forever: Optional[BaseException] = None
        self.attempts = 0
        self.options: List[Dict[str, Any]] = []
        self.handles: List[FakeHandle] = []
        self.gate: Optional[asyncio.Event] = None
        self.page_delay = page_delay

    async def launch(self, options: Dict[str, Any]) -> FakeHandle:
        self.attempts += 1
        self.options.append(dict(options))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_forever is not None:
            raise self.fail_forever
        if self.failures:
            raise self.failures.pop(0)
        handle = FakeHandle(FakePage(delay=self.page_delay))
        self.handles.append(handle)
        return handle


async def no_sleep(delay: float) -> None:
    await asyncio.sleep(0)


def make_session(
    launcher: FakeLauncher, *, liveness_timeout: Optional[float] = 5.0, **breaker_kwargs: Any
) -> SessionManager:
    breaker_kwargs.setdefault("failure_threshold", 3)
    breaker_kwargs.setdefault("cooldown", 10.0)
    return SessionManager(
        launcher,
        breaker=CircuitBreaker(**breaker_kwargs),
        retry=RetryPolicy(max_attempts=1),
        sleep=no_sleep,
        rng=lambda: 0.0,
        liveness_timeout=liveness_timeout,
    )


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher(page_delay=0.01)


@pytest.fixture
def session(launcher: FakeLauncher) -> SessionManager:
    return make_session(launcher)


@pytest.fixture
def dispatcher(session: SessionManager) -> Dispatcher:
    return Dispatcher(session, build_default_registry(), default_timeout=5.0)
