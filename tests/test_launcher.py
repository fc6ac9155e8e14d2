import pytest

from browsermux.browser.launcher import PlaywrightLauncher, classify_launch_error
from browsermux.errors import LaunchError, is_browser_dead_error


@pytest.mark.parametrize(
    "exc",
    [
        FileNotFoundError("/usr/bin/brave"),
        PermissionError("denied"),
        RuntimeError("Executable doesn't exist at /root/.cache/ms-playwright/chromium/chrome"),
        OSError("spawn /opt/chrome EACCES"),
    ],
)
def test_missing_or_unusable_executable_is_fatal(exc):
    assert classify_launch_error(exc).fatal


@pytest.mark.parametrize(
    "exc",
    [
        ConnectionRefusedError("connect ECONNREFUSED 127.0.0.1:9222"),
        TimeoutError("Timeout 30000ms exceeded while waiting for the websocket endpoint"),
        RuntimeError("Browser closed during launch\nlog lines follow"),
    ],
)
def test_connection_and_handshake_failures_are_transient(exc):
    error = classify_launch_error(exc)
    assert error.transient
    assert "\n" not in error.message


def test_launch_errors_pass_through():
    original = LaunchError.fatal_error("no browser")
    assert classify_launch_error(original) is original


@pytest.mark.asyncio
async def test_missing_configured_executable_fails_before_starting_playwright(tmp_path):
    launcher = PlaywrightLauncher(executable_path=str(tmp_path / "missing-browser"))
    with pytest.raises(LaunchError) as info:
        await launcher.launch({})
    assert info.value.fatal


def test_dead_browser_messages():
    assert is_browser_dead_error(RuntimeError("Target closed"))
    assert is_browser_dead_error(RuntimeError("Browser has been closed."))
    assert not is_browser_dead_error(RuntimeError("Timeout 30000ms exceeded"))
