"""Error taxonomy shared by every layer of browsermux.

Each error carries a stable ``kind`` string so that clients can branch on the
category of a failure instead of parsing the message.  ``to_dict`` renders the
``error`` member of the canonical response envelope.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BrowserMuxError(Exception):
    """Base class for all errors surfaced through a ``ToolResult``."""

    kind = "BrowserMuxError"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class WorkflowViolationError(BrowserMuxError):
    """The tool is not legal in the current workflow phase."""

    kind = "WorkflowViolationError"

    def __init__(
        self,
        tool: str,
        *,
        expected_phase: str,
        actual_phase: str,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            message
            or f"{tool!r} requires phase {expected_phase}, current phase is {actual_phase}.",
            details={
                "tool": tool,
                "expected_phase": expected_phase,
                "actual_phase": actual_phase,
            },
        )
        self.tool = tool
        self.expected_phase = expected_phase
        self.actual_phase = actual_phase


class BrowserNotInitializedError(WorkflowViolationError):
    """A tool needed a ready browser but ``browser_init`` has not succeeded."""

    kind = "BrowserNotInitializedError"

    def __init__(self, tool: str, *, actual_phase: str = "NotReady") -> None:
        super().__init__(
            tool,
            expected_phase="Ready",
            actual_phase=actual_phase,
            message=f"Browser not initialized. Call browser_init before {tool!r}.",
        )


class LaunchError(BrowserMuxError):
    """The external browser process failed to start."""

    kind = "LaunchError"

    def __init__(self, message: str, *, fatal: bool = False, attempts: int = 0) -> None:
        super().__init__(
            message,
            details={"fatal": fatal, "attempts": attempts},
        )
        self.fatal = fatal
        self.attempts = attempts

    @property
    def transient(self) -> bool:
        return not self.fatal

    @classmethod
    def transient_error(cls, message: str) -> "LaunchError":
        return cls(message, fatal=False)

    @classmethod
    def fatal_error(cls, message: str) -> "LaunchError":
        return cls(message, fatal=True)


class CircuitOpenError(BrowserMuxError):
    """Launch attempts are suspended until the breaker cooldown elapses."""

    kind = "CircuitOpenError"

    def __init__(self, remaining_cooldown_ms: int) -> None:
        super().__init__(
            f"Circuit breaker is open; browser launch disabled for another "
            f"{remaining_cooldown_ms} ms.",
            details={"remaining_cooldown_ms": remaining_cooldown_ms},
        )
        self.remaining_cooldown_ms = remaining_cooldown_ms


class BrowserCrashedError(BrowserMuxError):
    """The browser process exited while the session was in use."""

    kind = "BrowserCrashedError"


class SessionClosedError(BrowserMuxError):
    """The session was closed while the caller was waiting for the handle."""

    kind = "SessionClosedError"


class CloseError(BrowserMuxError):
    """Tearing down the browser process did not complete cleanly."""

    kind = "CloseError"


class InvocationTimeoutError(BrowserMuxError):
    """A tool handler exceeded its timeout budget."""

    kind = "InvocationTimeoutError"

    def __init__(self, tool: str, timeout: float) -> None:
        super().__init__(
            f"{tool!r} did not finish within {timeout:g} s.",
            details={"tool": tool, "timeout_ms": int(timeout * 1000)},
        )


class TransportError(BrowserMuxError):
    """A request envelope could not be parsed at the adapter boundary."""

    kind = "TransportError"


class UnknownToolError(TransportError):
    """The request named a tool that is not registered."""

    kind = "UnknownToolError"

    def __init__(self, tool: str) -> None:
        super().__init__(f"Unknown tool: {tool!r}.", details={"tool": tool})
        self.tool = tool


class ToolExecutionError(BrowserMuxError):
    """A tool handler failed; only its message and kind reach the caller."""

    kind = "ToolExecutionError"

    def __init__(self, message: str, *, fatal: bool = False) -> None:
        super().__init__(message)
        self.fatal = fatal


_BROWSER_DEAD_PATTERNS = (
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "connection closed",
    "browser disconnected",
    "session closed",
)


def is_browser_dead_error(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` indicates the browser process is gone."""
    msg = str(exc).lower()
    return any(pattern in msg for pattern in _BROWSER_DEAD_PATTERNS)


__all__ = [
    "BrowserMuxError",
    "WorkflowViolationError",
    "BrowserNotInitializedError",
    "LaunchError",
    "CircuitOpenError",
    "BrowserCrashedError",
    "SessionClosedError",
    "CloseError",
    "InvocationTimeoutError",
    "TransportError",
    "UnknownToolError",
    "ToolExecutionError",
    "is_browser_dead_error",
]
