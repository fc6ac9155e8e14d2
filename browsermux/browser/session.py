"""Ownership and lifecycle of the single shared browser session.

:class:`SessionManager` is the only writer of :class:`Session` state.  Every
state change goes through :meth:`SessionManager._apply`, which consults
``_TRANSITIONS``; launches, handle hand-offs, closes and process exits are all
expressed as :class:`SessionEvent` messages delivered to that one entry point.

Concurrency model: one asyncio loop, one handle, one holder.  Waiters queue in
a deque of futures and are served strictly first-in first-out.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Mapping, Optional, Set

from ..errors import (
    BrowserCrashedError,
    BrowserMuxError,
    BrowserNotInitializedError,
    CloseError,
    SessionClosedError,
)
from .breaker import BreakerState, CircuitBreaker, RetryPolicy
from .launcher import BrowserHandle, Launcher, classify_launch_error

logger = logging.getLogger(__name__)

DEFAULT_LIVENESS_TIMEOUT = 5.0


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    BUSY = "busy"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


class SessionEvent(str, Enum):
    LAUNCH_STARTED = "launch_started"
    LAUNCH_SUCCEEDED = "launch_succeeded"
    LAUNCH_FAILED = "launch_failed"
    ACQUIRED = "acquired"
    RELEASED = "released"
    CLOSE_REQUESTED = "close_requested"
    CLOSED = "closed"
    PROCESS_EXITED = "process_exited"
    INVALIDATED = "invalidated"


S, E = SessionState, SessionEvent

_TRANSITIONS: Dict[tuple, SessionState] = {
    (S.UNINITIALIZED, E.LAUNCH_STARTED): S.INITIALIZING,
    (S.CLOSED, E.LAUNCH_STARTED): S.INITIALIZING,
    (S.FAILED, E.LAUNCH_STARTED): S.INITIALIZING,
    (S.INITIALIZING, E.LAUNCH_SUCCEEDED): S.READY,
    (S.INITIALIZING, E.LAUNCH_FAILED): S.FAILED,
    (S.READY, E.ACQUIRED): S.BUSY,
    (S.BUSY, E.RELEASED): S.READY,
    (S.READY, E.CLOSE_REQUESTED): S.CLOSING,
    (S.BUSY, E.CLOSE_REQUESTED): S.CLOSING,
    (S.FAILED, E.CLOSE_REQUESTED): S.CLOSING,
    (S.CLOSING, E.CLOSED): S.CLOSED,
    (S.READY, E.PROCESS_EXITED): S.FAILED,
    (S.BUSY, E.PROCESS_EXITED): S.FAILED,
    (S.READY, E.INVALIDATED): S.FAILED,
    (S.BUSY, E.INVALIDATED): S.FAILED,
}

del S, E

StateListener = Callable[[SessionState, SessionState, SessionEvent], None]


@dataclass
class Session:
    """The one browser/page pair owned by the process."""

    state: SessionState = SessionState.UNINITIALIZED
    handle: Optional[BrowserHandle] = field(default=None, repr=False)
    last_error: Optional[BrowserMuxError] = None


class SessionManager:
    """Single owner of the browser handle.

    ``init`` is idempotent and single-flight; ``acquire``/``release`` hand the
    page handle to one invocation at a time in arrival order; ``close`` tears
    the process down; process exits are detected through the handle's exit
    callback.
    """

    def __init__(
        self,
        launcher: Launcher,
        *,
        breaker: Optional[CircuitBreaker] = None,
        retry: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        liveness_timeout: Optional[float] = DEFAULT_LIVENESS_TIMEOUT,
    ) -> None:
        self._launcher = launcher
        self.breaker = breaker or CircuitBreaker()
        self.retry = retry or RetryPolicy()
        self.liveness_timeout = liveness_timeout
        self._sleep = sleep
        self._rng = rng
        self._session = Session()
        self._launching: Optional[asyncio.Future] = None
        self._waiters: Deque[asyncio.Future] = deque()
        self._holder: Optional[BrowserHandle] = None
        self._listeners: List[StateListener] = []
        self._cleanup: Set[asyncio.Future] = set()
        self.launch_attempts = 0

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def last_error(self) -> Optional[BrowserMuxError]:
        return self._session.last_error

    @property
    def queue_depth(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    def subscribe(self, listener: StateListener) -> None:
        """Register ``listener(old_state, new_state, event)`` for transitions."""
        self._listeners.append(listener)

    def _apply(self, event: SessionEvent, *, error: Optional[BrowserMuxError] = None) -> bool:
        old = self._session.state
        new = _TRANSITIONS.get((old, event))
        if new is None:
            logger.debug("Ignoring session event %s in state %s", event.value, old.value)
            return False
        self._session.state = new
        if error is not None:
            self._session.last_error = error
        elif new is SessionState.READY and event is SessionEvent.LAUNCH_SUCCEEDED:
            self._session.last_error = None
        if old is not new:
            logger.info("Session %s -> %s (%s)", old.value, new.value, event.value)
        for listener in list(self._listeners):
            try:
                listener(old, new, event)
            except Exception:
                logger.exception("Session state listener failed")
        return True

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "queue_depth": self.queue_depth,
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "circuit_breaker": self.breaker.snapshot(),
        }

    # ------------------------------------------------------------------ #
    # Launch
    # ------------------------------------------------------------------ #

    async def init(self, options: Optional[Mapping[str, Any]] = None) -> SessionState:
        """Launch the browser unless it is already running.

        Concurrent callers share a single in-flight launch and observe the
        same outcome.  An idle ready session is checked for liveness first
        and relaunched if the check fails.
        """
        if self.state is SessionState.READY and self._holder is None:
            handle = self._session.handle
            if handle is not None and await self._is_alive(handle):
                return self.state
        if self.state in (SessionState.READY, SessionState.BUSY):
            return self.state
        if self.state is SessionState.CLOSING:
            raise SessionClosedError("Browser session is closing.")
        if self._launching is None:
            self.breaker.check()
            self._apply(SessionEvent.LAUNCH_STARTED)
            loop = asyncio.get_running_loop()
            self._launching = loop.create_task(self._launch_with_retry(dict(options or {})))
            self._launching.add_done_callback(self._clear_launching)
        await asyncio.shield(self._launching)
        return self.state

    def _clear_launching(self, task: asyncio.Future) -> None:
        if self._launching is task:
            self._launching = None
        if not task.cancelled():
            task.exception()

    async def _launch_with_retry(self, options: Dict[str, Any]) -> None:
        attempt = 0
        while True:
            attempt += 1
            self.launch_attempts += 1
            try:
                handle = await self._launcher.launch(options)
            except Exception as exc:
                error = classify_launch_error(exc)
                error.attempts = attempt
                error.details["attempts"] = attempt
                if error.fatal:
                    logger.error("Fatal browser launch failure: %s", error.message)
                    self._apply(SessionEvent.LAUNCH_FAILED, error=error)
                    raise error from exc
                self.breaker.record_failure()
                out_of_attempts = attempt >= self.retry.max_attempts
                if out_of_attempts or self.breaker.state is BreakerState.OPEN:
                    logger.error(
                        "Browser launch failed after %s attempt(s): %s", attempt, error.message
                    )
                    self._apply(SessionEvent.LAUNCH_FAILED, error=error)
                    raise error from exc
                delay = self.retry.delay(attempt, self._rng)
                logger.warning(
                    "Transient launch failure (attempt %s/%s): %s; retrying in %.2fs",
                    attempt,
                    self.retry.max_attempts,
                    error.message,
                    delay,
                )
                await self._sleep(delay)
                continue
            break
        self.breaker.record_success()
        self._session.handle = handle
        handle.on_exit(lambda: self._on_process_exit(handle))
        self._apply(SessionEvent.LAUNCH_SUCCEEDED)

    # ------------------------------------------------------------------ #
    # Exclusive access
    # ------------------------------------------------------------------ #

    async def acquire(self) -> BrowserHandle:
        """Return the handle for exclusive use, queueing behind the holder.

        The handle is checked for liveness before it is handed out; a dead
        browser invalidates the session and raises :class:`BrowserCrashedError`.
        """
        state = self.state
        if state not in (SessionState.READY, SessionState.BUSY):
            raise BrowserNotInitializedError("acquire", actual_phase=state.value)
        handle = self._session.handle
        if state is SessionState.READY and self._holder is None and not self.queue_depth:
            self._holder = handle
            self._apply(SessionEvent.ACQUIRED)
        else:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            try:
                handle = await waiter
            except asyncio.CancelledError:
                if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                    self.release(waiter.result())
                raise
        try:
            alive = await self._is_alive(handle)
        except asyncio.CancelledError:
            self.release(handle)
            raise
        if not alive:
            raise self.last_error or BrowserCrashedError("Browser failed its liveness check.")
        return handle

    def release(self, handle: BrowserHandle) -> None:
        """Give the handle to the next waiter, or mark the session ready."""
        if handle is not self._holder:
            return
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(handle)
                return
        self._holder = None
        self._apply(SessionEvent.RELEASED)

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[BrowserHandle]:
        handle = await self.acquire()
        try:
            yield handle
        finally:
            self.release(handle)

    def _reject_waiters(self, error: BrowserMuxError) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(error)
        self._holder = None

    # ------------------------------------------------------------------ #
    # Teardown and failure
    # ------------------------------------------------------------------ #

    async def close(self) -> SessionState:
        """Tear down the browser and reject queued invocations."""
        if self._launching is not None:
            try:
                await asyncio.shield(self._launching)
            except BrowserMuxError:
                pass
        if self.state in (SessionState.UNINITIALIZED, SessionState.CLOSED):
            return self.state
        handle = self._session.handle
        self._apply(SessionEvent.CLOSE_REQUESTED)
        self._reject_waiters(SessionClosedError("Browser session was closed."))
        self._session.handle = None
        try:
            if handle is not None:
                await handle.close()
        except Exception as exc:
            error = CloseError(f"Browser did not close cleanly: {exc}")
            self._apply(SessionEvent.CLOSED, error=error)
            raise error from exc
        self._apply(SessionEvent.CLOSED)
        return self.state

    def _on_process_exit(self, handle: BrowserHandle) -> None:
        if handle is not self._session.handle:
            return
        error = BrowserCrashedError("Browser process exited unexpectedly.")
        if not self._apply(SessionEvent.PROCESS_EXITED, error=error):
            return
        self._session.handle = None
        self._reject_waiters(error)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        # Playwright's driver outlives the browser process; stop it in the background.
        task = loop.create_task(self._discard(handle))
        self._cleanup.add(task)
        task.add_done_callback(self._cleanup.discard)

    async def _discard(self, handle: BrowserHandle) -> None:
        try:
            await handle.close()
        except Exception:
            logger.debug("Ignoring close failure on discarded handle", exc_info=True)

    async def _is_alive(self, handle: BrowserHandle) -> bool:
        """Ping ``handle``; on failure invalidate the session and return ``False``."""
        if self.liveness_timeout is None:
            return True
        try:
            await asyncio.wait_for(handle.ping(), self.liveness_timeout)
        except asyncio.TimeoutError:
            reason = f"Browser did not answer a liveness check within {self.liveness_timeout:g} s."
        except Exception as exc:
            first_line = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
            reason = f"Browser failed a liveness check: {first_line}"
        else:
            return True
        logger.warning("Discarding unresponsive browser: %s", reason)
        await self.invalidate(handle, reason)
        return False

    async def invalidate(self, handle: BrowserHandle, reason: str) -> None:
        """Discard ``handle`` if it still backs the session; stale handles are ignored."""
        if handle is not self._session.handle:
            logger.debug("Ignoring invalidation of a stale handle: %s", reason)
            return
        error = BrowserCrashedError(reason)
        if not self._apply(SessionEvent.INVALIDATED, error=error):
            return
        self._session.handle = None
        self._reject_waiters(error)
        if handle is not None:
            await self._discard(handle)


__all__ = ["Session", "SessionEvent", "SessionManager", "SessionState"]
