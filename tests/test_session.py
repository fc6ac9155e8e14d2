import asyncio

import pytest

from browsermux.browser import SessionState
from browsermux.browser.breaker import RetryPolicy
from browsermux.errors import (
    BrowserCrashedError,
    BrowserNotInitializedError,
    CircuitOpenError,
    LaunchError,
    SessionClosedError,
)

from conftest import FakeLauncher, make_session


@pytest.mark.asyncio
async def test_concurrent_init_launches_once():
    launcher = FakeLauncher()
    launcher.gate = asyncio.Event()
    session = make_session(launcher)

    calls = [asyncio.create_task(session.init()) for _ in range(5)]
    await asyncio.sleep(0)
    assert session.state is SessionState.INITIALIZING
    launcher.gate.set()
    states = await asyncio.gather(*calls)

    assert launcher.attempts == 1
    assert states == [SessionState.READY] * 5
    assert await session.init() is SessionState.READY
    assert launcher.attempts == 1


@pytest.mark.asyncio
async def test_concurrent_init_callers_share_failure():
    launcher = FakeLauncher()
    launcher.fail_forever = ConnectionRefusedError("connect ECONNREFUSED 127.0.0.1:9222")
    session = make_session(launcher)

    results = await asyncio.gather(session.init(), session.init(), return_exceptions=True)

    assert launcher.attempts == 1
    assert all(isinstance(result, LaunchError) for result in results)
    assert session.state is SessionState.FAILED


@pytest.mark.asyncio
async def test_breaker_opens_after_threshold_without_new_attempt():
    launcher = FakeLauncher()
    launcher.fail_forever = ConnectionRefusedError("connection refused")
    session = make_session(launcher, failure_threshold=3, cooldown=10.0)

    for _ in range(3):
        with pytest.raises(LaunchError):
            await session.init()
    with pytest.raises(CircuitOpenError) as info:
        await session.init()

    assert launcher.attempts == 3
    assert info.value.remaining_cooldown_ms > 0
    assert info.value.to_dict()["kind"] == "CircuitOpenError"


@pytest.mark.asyncio
async def test_transient_failures_are_retried():
    launcher = FakeLauncher(failures=[TimeoutError("handshake timed out")])
    session = make_session(launcher)
    session.retry = RetryPolicy(max_attempts=3)

    assert await session.init() is SessionState.READY
    assert launcher.attempts == 2
    assert session.breaker.consecutive_failures == 0


@pytest.mark.asyncio
async def test_fatal_failure_bypasses_retry_and_breaker():
    launcher = FakeLauncher()
    launcher.fail_forever = FileNotFoundError("/opt/brave/brave: no such file or directory")
    session = make_session(launcher)
    session.retry = RetryPolicy(max_attempts=5)

    with pytest.raises(LaunchError) as info:
        await session.init()

    assert info.value.fatal
    assert launcher.attempts == 1
    assert session.breaker.consecutive_failures == 0
    assert session.last_error is info.value


@pytest.mark.asyncio
async def test_acquire_before_init_is_rejected():
    session = make_session(FakeLauncher())
    with pytest.raises(BrowserNotInitializedError):
        await session.acquire()


@pytest.mark.asyncio
async def test_waiters_are_served_in_fifo_order():
    session = make_session(FakeLauncher())
    await session.init()
    order = []

    async def worker(name):
        async with session.hold():
            order.append(f"{name}-start")
            await asyncio.sleep(0.01)
            order.append(f"{name}-end")

    await asyncio.gather(worker("a"), worker("b"), worker("c"))

    assert order == ["a-start", "a-end", "b-start", "b-end", "c-start", "c-end"]
    assert session.state is SessionState.READY


@pytest.mark.asyncio
async def test_close_rejects_waiters_and_closes_process():
    launcher = FakeLauncher()
    session = make_session(launcher)
    await session.init()
    handle = await session.acquire()
    assert session.state is SessionState.BUSY

    waiter = asyncio.create_task(session.acquire())
    await asyncio.sleep(0)
    assert session.queue_depth == 1

    assert await session.close() is SessionState.CLOSED
    with pytest.raises(SessionClosedError):
        await waiter
    assert handle.closed == 1
    session.release(handle)
    assert session.state is SessionState.CLOSED


@pytest.mark.asyncio
async def test_close_when_uninitialized_is_a_no_op():
    session = make_session(FakeLauncher())
    assert await session.close() is SessionState.UNINITIALIZED


@pytest.mark.asyncio
async def test_process_exit_fails_session_and_rejects_waiters():
    launcher = FakeLauncher()
    session = make_session(launcher)
    await session.init()
    handle = await session.acquire()
    waiter = asyncio.create_task(session.acquire())
    await asyncio.sleep(0)

    handle.trigger_exit()

    assert session.state is SessionState.FAILED
    with pytest.raises(BrowserCrashedError):
        await waiter
    with pytest.raises(BrowserNotInitializedError):
        await session.acquire()

    assert await session.init() is SessionState.READY
    assert launcher.attempts == 2


@pytest.mark.asyncio
async def test_init_reopens_after_close():
    launcher = FakeLauncher()
    session = make_session(launcher)
    await session.init()
    await session.close()
    assert await session.init() is SessionState.READY
    assert launcher.attempts == 2


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_block_queue():
    session = make_session(FakeLauncher())
    await session.init()
    handle = await session.acquire()
    cancelled = asyncio.create_task(session.acquire())
    queued = asyncio.create_task(session.acquire())
    await asyncio.sleep(0)
    cancelled.cancel()
    await asyncio.sleep(0)

    session.release(handle)
    assert await queued is handle
    session.release(handle)
    assert session.state is SessionState.READY


@pytest.mark.asyncio
async def test_init_relaunches_when_idle_browser_stops_answering():
    launcher = FakeLauncher()
    session = make_session(launcher)
    await session.init()
    stale = launcher.handles[0]
    stale.responsive = False

    assert await session.init() is SessionState.READY
    assert launcher.attempts == 2
    assert stale.closed == 1
    assert launcher.handles[1].pings == 0


@pytest.mark.asyncio
async def test_acquire_invalidates_unresponsive_browser():
    launcher = FakeLauncher()
    session = make_session(launcher)
    await session.init()
    launcher.handles[0].responsive = False

    with pytest.raises(BrowserCrashedError, match="liveness check"):
        await session.acquire()
    assert session.state is SessionState.FAILED
    assert launcher.handles[0].closed == 1


@pytest.mark.asyncio
async def test_hung_browser_fails_liveness_check_within_timeout():
    launcher = FakeLauncher()
    session = make_session(launcher, liveness_timeout=0.05)
    await session.init()
    launcher.handles[0].hung = True

    with pytest.raises(BrowserCrashedError, match="did not answer"):
        await session.acquire()
    assert session.state is SessionState.FAILED


@pytest.mark.asyncio
async def test_liveness_check_can_be_disabled():
    launcher = FakeLauncher()
    session = make_session(launcher, liveness_timeout=None)
    await session.init()
    async with session.hold():
        pass
    assert launcher.handles[0].pings == 0


@pytest.mark.asyncio
async def test_stale_handle_cannot_invalidate_current_session():
    launcher = FakeLauncher()
    session = make_session(launcher)
    await session.init()
    old = launcher.handles[0]
    old.trigger_exit()
    await session.init()

    await session.invalidate(old, "Target closed")
    assert session.state is SessionState.READY
