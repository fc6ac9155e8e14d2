"""Circuit breaker and retry policy guarding browser launches."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ..errors import CircuitOpenError

logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Fail fast after repeated launch failures until a cooldown elapses.

    ``failure_threshold`` consecutive failures recorded within ``window``
    seconds of each other open the breaker for ``cooldown`` seconds.  Once the
    cooldown has passed the breaker lets a single trial through (half-open): a
    success closes it again, a failure reopens it with the cooldown multiplied
    by ``backoff`` (capped at ``max_cooldown``).
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        cooldown: float = 30.0,
        max_cooldown: float = 300.0,
        backoff: float = 2.0,
        window: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1.")
        self.failure_threshold = failure_threshold
        self.base_cooldown = cooldown
        self.max_cooldown = max(max_cooldown, cooldown)
        self.backoff = backoff
        self.window = window
        self._clock = clock
        self._state = BreakerState.CLOSED
        self.consecutive_failures = 0
        self.cooldown_until = 0.0
        self._current_cooldown = cooldown
        self._last_failure_at = 0.0

    @property
    def state(self) -> BreakerState:
        return self._state

    def remaining_cooldown(self) -> float:
        if self._state is not BreakerState.OPEN:
            return 0.0
        return max(0.0, self.cooldown_until - self._clock())

    def check(self) -> None:
        """Raise :class:`CircuitOpenError` if a launch may not be attempted now."""
        if self._state is not BreakerState.OPEN:
            return
        remaining = self.cooldown_until - self._clock()
        if remaining > 0:
            raise CircuitOpenError(max(1, int(remaining * 1000)))
        self._state = BreakerState.HALF_OPEN
        logger.info("Circuit breaker half-open; allowing a trial launch")

    def record_success(self) -> None:
        if self._state is not BreakerState.CLOSED:
            logger.info("Circuit breaker closed after successful launch")
        self._state = BreakerState.CLOSED
        self.consecutive_failures = 0
        self.cooldown_until = 0.0
        self._current_cooldown = self.base_cooldown

    def record_failure(self) -> None:
        now = self._clock()
        if self._state is BreakerState.HALF_OPEN:
            self._current_cooldown = min(self._current_cooldown * self.backoff, self.max_cooldown)
            self._open(now)
            return
        if self.consecutive_failures and now - self._last_failure_at > self.window:
            self.consecutive_failures = 0
        self.consecutive_failures += 1
        self._last_failure_at = now
        if self.consecutive_failures >= self.failure_threshold:
            self._open(now)

    def _open(self, now: float) -> None:
        self._state = BreakerState.OPEN
        self.cooldown_until = now + self._current_cooldown
        logger.warning(
            "Circuit breaker opened after %s consecutive failures; cooldown %.1fs",
            self.consecutive_failures,
            self._current_cooldown,
        )

    def snapshot(self) -> dict:
        return {
            "state": self._state.value,
            "consecutive_failures": self.consecutive_failures,
            "failure_threshold": self.failure_threshold,
            "remaining_cooldown_ms": int(self.remaining_cooldown() * 1000),
        }


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter for transient launch failures."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.25

    def delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        raw = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return raw + raw * self.jitter * rng()


__all__ = ["BreakerState", "CircuitBreaker", "RetryPolicy"]
