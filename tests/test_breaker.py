import pytest

from browsermux.browser.breaker import BreakerState, CircuitBreaker, RetryPolicy
from browsermux.errors import CircuitOpenError


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_opens_after_threshold_consecutive_failures():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=3, cooldown=10.0, clock=clock)
    breaker.record_failure()
    breaker.record_failure()
    breaker.check()
    assert breaker.state is BreakerState.CLOSED

    breaker.record_failure()
    assert breaker.state is BreakerState.OPEN
    with pytest.raises(CircuitOpenError) as info:
        breaker.check()
    assert 0 < info.value.remaining_cooldown_ms <= 10000


def test_half_open_after_cooldown_and_closes_on_success():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=1, cooldown=5.0, clock=clock)
    breaker.record_failure()
    clock.now += 5.1
    breaker.check()
    assert breaker.state is BreakerState.HALF_OPEN
    breaker.record_success()
    assert breaker.state is BreakerState.CLOSED
    assert breaker.consecutive_failures == 0


def test_half_open_failure_reopens_with_longer_cooldown():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=1, cooldown=5.0, backoff=2.0, clock=clock)
    breaker.record_failure()
    clock.now += 6
    breaker.check()
    breaker.record_failure()
    assert breaker.state is BreakerState.OPEN
    assert breaker.remaining_cooldown() == pytest.approx(10.0)


def test_failures_outside_window_do_not_accumulate():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=2, window=60.0, clock=clock)
    breaker.record_failure()
    clock.now += 120
    breaker.record_failure()
    assert breaker.state is BreakerState.CLOSED
    assert breaker.consecutive_failures == 1


def test_snapshot_reports_state():
    breaker = CircuitBreaker(failure_threshold=1, cooldown=30.0)
    breaker.record_failure()
    snapshot = breaker.snapshot()
    assert snapshot["state"] == "open"
    assert snapshot["remaining_cooldown_ms"] > 0


def test_retry_delay_grows_and_is_capped():
    policy = RetryPolicy(base_delay=0.5, max_delay=2.0, jitter=0.0)
    assert policy.delay(1) == 0.5
    assert policy.delay(2) == 1.0
    assert policy.delay(5) == 2.0


def test_retry_jitter_is_bounded():
    policy = RetryPolicy(base_delay=1.0, jitter=0.25)
    assert policy.delay(1, rng=lambda: 1.0) == pytest.approx(1.25)
    assert policy.delay(1, rng=lambda: 0.0) == pytest.approx(1.0)
