"""Playwright launcher producing the handle owned by the session manager.

The launcher only knows how to start and stop one Chromium process with a
single page.  Retry, circuit breaking and exclusive access live in
:mod:`browsermux.browser.session`; the launcher's job is to turn whatever
Playwright raises into a :class:`~browsermux.errors.LaunchError` that says
whether trying again could help.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from ..errors import LaunchError

logger = logging.getLogger(__name__)

# Args that minimise automation fingerprints when launching Chromium.
DEFAULT_LAUNCH_ARGS: tuple[str, ...] = (
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-background-networking",
    "--disable-renderer-backgrounding",
    "--no-first-run",
)

_FATAL_PATTERNS = (
    "executable doesn't exist",
    "no such file or directory",
    "enoent",
    "permission denied",
    "eacces",
    "is not executable",
    "please run the following command to download new browsers",
)


def classify_launch_error(exc: BaseException) -> LaunchError:
    """Map a launch failure onto a transient or fatal :class:`LaunchError`.

    Missing executables and permission problems cannot be fixed by waiting, so
    they are fatal.  Everything else (refused connections, handshake
    timeouts, a browser that died while starting) is treated as transient.
    """
    if isinstance(exc, LaunchError):
        return exc
    if isinstance(exc, (PermissionError, FileNotFoundError)):
        return LaunchError.fatal_error(str(exc) or exc.__class__.__name__)
    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    if any(pattern in lowered for pattern in _FATAL_PATTERNS):
        return LaunchError.fatal_error(message.splitlines()[0])
    return LaunchError.transient_error(message.splitlines()[0])


class BrowserHandle(Protocol):
    """What the session manager needs from a launched browser."""

    page: Any

    def on_exit(self, callback: Callable[[], None]) -> None: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


class Launcher(Protocol):
    async def launch(self, options: Mapping[str, Any]) -> BrowserHandle: ...


@dataclass
class PlaywrightHandle:
    """One Chromium process with a single persistent context and page."""

    playwright: Playwright
    browser: Browser
    context: BrowserContext
    page: Page
    headless: bool = True
    _exit_callbacks: List[Callable[[], None]] = field(default_factory=list)
    _closed: bool = False

    def __post_init__(self) -> None:
        self.browser.on("disconnected", self._handle_disconnect)

    def on_exit(self, callback: Callable[[], None]) -> None:
        self._exit_callbacks.append(callback)

    def _handle_disconnect(self, _browser: Browser) -> None:
        if self._closed:
            return
        logger.warning("Browser process disconnected unexpectedly")
        for callback in list(self._exit_callbacks):
            callback()

    async def ping(self) -> None:
        """Raise if the browser or its page stopped answering."""
        if not self.browser.is_connected():
            raise RuntimeError("Browser has been closed.")
        if self.page.is_closed():
            raise RuntimeError("Target page has been closed.")
        await self.page.evaluate("() => true")

    async def close(self) -> None:
        """Close the page, context and browser, then stop Playwright."""
        self._closed = True
        with suppress(Exception):
            if not self.page.is_closed():
                await self.page.close()
        with suppress(Exception):
            await self.context.close()
        try:
            await self.browser.close()
        finally:
            with suppress(Exception):
                await self.playwright.stop()


class PlaywrightLauncher:
    """Start Chromium through Playwright's async API.

    Per-call ``options`` (the ``browser_init`` arguments) take precedence over
    the constructor defaults, which in turn come from the ``HEADLESS`` and
    ``BROWSER_PATH`` settings.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        executable_path: Optional[str] = None,
        launch_args: Optional[Sequence[str]] = None,
        default_timeout_ms: int = 30000,
        handshake_timeout: float = 120.0,
    ) -> None:
        self._headless = headless
        self._executable_path = executable_path
        self._launch_args = tuple(launch_args or DEFAULT_LAUNCH_ARGS)
        self._default_timeout_ms = default_timeout_ms
        self._handshake_timeout = handshake_timeout

    async def launch(self, options: Mapping[str, Any]) -> PlaywrightHandle:
        headless = options.get("headless")
        headless = self._headless if headless is None else bool(headless)
        executable = options.get("executable_path") or self._executable_path
        if executable and not Path(executable).exists():
            raise LaunchError.fatal_error(f"Browser executable not found: {executable}")
        proxy = options.get("proxy")

        logger.info("Launching Chromium (headless=%s, executable=%s)", headless, executable or "bundled")
        playwright = await async_playwright().start()
        try:
            browser = await asyncio.wait_for(
                playwright.chromium.launch(
                    headless=headless,
                    executable_path=executable or None,
                    args=list(self._launch_args),
                    proxy={"server": proxy} if proxy else None,
                    timeout=self._handshake_timeout * 1000,
                ),
                timeout=self._handshake_timeout,
            )
            context = await browser.new_context()
            context.set_default_timeout(self._default_timeout_ms)
            page = await context.new_page()
        except asyncio.TimeoutError as exc:
            with suppress(Exception):
                await playwright.stop()
            raise LaunchError.transient_error(
                f"Browser handshake timed out after {self._handshake_timeout:g} s."
            ) from exc
        except Exception as exc:
            with suppress(Exception):
                await playwright.stop()
            raise classify_launch_error(exc) from exc
        logger.info("Chromium %s ready", browser.version)
        return PlaywrightHandle(
            playwright=playwright,
            browser=browser,
            context=context,
            page=page,
            headless=headless,
        )


__all__ = [
    "DEFAULT_LAUNCH_ARGS",
    "BrowserHandle",
    "Launcher",
    "PlaywrightHandle",
    "PlaywrightLauncher",
    "classify_launch_error",
]