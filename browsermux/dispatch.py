"""Canonical invocation path shared by every transport.

Transports build a :class:`ToolInvocation`, hand it to
:meth:`Dispatcher.dispatch` and render the returned :class:`ToolResult` in
their own framing.  The dispatcher never raises for a failed tool; every
failure is folded into the result.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from .browser.session import SessionEvent, SessionManager, SessionState
from .errors import (
    BrowserMuxError,
    InvocationTimeoutError,
    ToolExecutionError,
    UnknownToolError,
    is_browser_dead_error,
)
from .events import (
    BROWSER_CLOSED,
    BROWSER_CRASHED,
    BROWSER_INIT_ERROR,
    BROWSER_INIT_START,
    BROWSER_INIT_SUCCESS,
    TOOL_ERROR,
    TOOL_START,
    TOOL_SUCCESS,
    EventBus,
)
from .tools import LIFECYCLE_CLOSE, LIFECYCLE_INIT, ToolRegistry, ToolSpec
from .workflow import WorkflowValidator

logger = logging.getLogger(__name__)

# Extra seconds granted on top of a handler's own ``timeout`` argument.
HANDLER_GRACE = 1.0


def new_request_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class ToolInvocation:
    """One protocol-agnostic tool request."""

    id: str
    tool_name: str
    arguments: Mapping[str, Any]
    origin_transport: str
    received_at: float = field(default_factory=time.time)
    timeout: Optional[float] = None

    @classmethod
    def create(
        cls,
        tool_name: str,
        arguments: Optional[Mapping[str, Any]] = None,
        *,
        origin: str,
        request_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> "ToolInvocation":
        return cls(
            id=str(request_id) if request_id is not None else new_request_id(),
            tool_name=tool_name,
            arguments=MappingProxyType(dict(arguments or {})),
            origin_transport=origin,
            timeout=timeout,
        )


@dataclass(frozen=True)
class ToolResult:
    id: str
    success: bool
    payload: Optional[Dict[str, Any]] = None
    error: Optional[BrowserMuxError] = None

    def __post_init__(self) -> None:
        if not self.success and self.error is None:
            raise ValueError("A failed ToolResult must carry an error.")

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error is not None else None

    def body(self) -> Dict[str, Any]:
        """The envelope without the id, identical for every transport."""
        if self.success:
            return {"success": True, "result": self.payload}
        return {"success": False, "error": self.error.to_dict()}

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.body()}


class Dispatcher:
    """Composition root: validator, session and registry behind one call.

    The session is owned by the caller and injected here; the dispatcher
    subscribes to its transitions to keep the workflow phase and the event
    bus in sync.
    """

    def __init__(
        self,
        session: SessionManager,
        registry: ToolRegistry,
        *,
        validator: Optional[WorkflowValidator] = None,
        events: Optional[EventBus] = None,
        default_timeout: float = 30.0,
    ) -> None:
        self.session = session
        self.registry = registry
        self.validator = validator or WorkflowValidator()
        self.events = events or EventBus()
        self.default_timeout = default_timeout
        session.subscribe(self.validator.on_session_transition)
        session.subscribe(self._publish_session_transition)

    def describe_tools(self) -> List[Dict[str, Any]]:
        return [spec.describe() for spec in self.registry]

    def snapshot(self) -> Dict[str, Any]:
        return {
            "session": self.session.snapshot(),
            "workflow_phase": self.validator.phase.value,
        }

    async def dispatch(self, invocation: ToolInvocation) -> ToolResult:
        started = time.monotonic()
        spec = self.registry.get(invocation.tool_name)
        if spec is None:
            return self._failed(invocation, UnknownToolError(invocation.tool_name), started)
        self.events.publish(
            TOOL_START,
            id=invocation.id,
            tool=spec.name,
            transport=invocation.origin_transport,
        )
        try:
            self.validator.check(spec)
            payload = await self._execute(spec, invocation)
        except BrowserMuxError as exc:
            return self._failed(invocation, exc, started)
        except Exception as exc:
            logger.exception("Unexpected failure dispatching %s", spec.name)
            return self._failed(invocation, ToolExecutionError(str(exc) or type(exc).__name__), started)
        self.events.publish(
            TOOL_SUCCESS,
            id=invocation.id,
            tool=spec.name,
            transport=invocation.origin_transport,
            duration_ms=_elapsed_ms(started),
        )
        return ToolResult(invocation.id, True, payload=payload)

    async def _execute(self, spec: ToolSpec, invocation: ToolInvocation) -> Dict[str, Any]:
        if spec.lifecycle == LIFECYCLE_INIT:
            return await self._init(invocation)
        if spec.lifecycle == LIFECYCLE_CLOSE:
            state = await self.session.close()
            return {"state": state.value}
        timeout = self._budget(invocation)
        async with self.session.hold() as handle:
            try:
                return await asyncio.wait_for(
                    spec.handler(handle.page, invocation.arguments), timeout
                )
            except asyncio.TimeoutError:
                logger.warning("%s timed out after %.1fs", spec.name, timeout)
                raise InvocationTimeoutError(spec.name, timeout) from None
            except BrowserMuxError:
                raise
            except Exception as exc:
                message = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
                error = ToolExecutionError(message, fatal=is_browser_dead_error(exc))
                if error.fatal:
                    logger.error("%s failed because the browser is gone: %s", spec.name, message)
                    await self.session.invalidate(handle, message)
                else:
                    logger.info("%s failed: %s", spec.name, message)
                raise error from exc

    def _budget(self, invocation: ToolInvocation) -> float:
        """Seconds the handler may run.

        An explicit invocation timeout wins.  Otherwise a handler-level
        ``timeout`` argument (milliseconds) above the default extends the
        budget, with a short grace so the handler's own timeout fires first.
        """
        if invocation.timeout:
            return invocation.timeout
        requested = invocation.arguments.get("timeout")
        if isinstance(requested, (int, float)) and not isinstance(requested, bool):
            return max(self.default_timeout, requested / 1000 + HANDLER_GRACE)
        return self.default_timeout

    async def _init(self, invocation: ToolInvocation) -> Dict[str, Any]:
        self.events.publish(BROWSER_INIT_START, id=invocation.id)
        try:
            await self.session.init(dict(invocation.arguments))
        except BrowserMuxError as exc:
            self.events.publish(BROWSER_INIT_ERROR, id=invocation.id, error=exc.to_dict())
            raise
        self.events.publish(BROWSER_INIT_SUCCESS, id=invocation.id)
        return {"state": SessionState.READY.value}

    def _failed(self, invocation: ToolInvocation, error: BrowserMuxError, started: float) -> ToolResult:
        self.events.publish(
            TOOL_ERROR,
            id=invocation.id,
            tool=invocation.tool_name,
            transport=invocation.origin_transport,
            error=error.to_dict(),
            duration_ms=_elapsed_ms(started),
        )
        return ToolResult(invocation.id, False, error=error)

    def _publish_session_transition(
        self, old: SessionState, new: SessionState, event: SessionEvent
    ) -> None:
        if event is SessionEvent.CLOSED:
            self.events.publish(BROWSER_CLOSED)
        elif new is SessionState.FAILED and event in (
            SessionEvent.PROCESS_EXITED,
            SessionEvent.INVALIDATED,
        ):
            last_error = self.session.last_error
            self.events.publish(
                BROWSER_CRASHED, error=last_error.to_dict() if last_error else None
            )

    async def shutdown(self) -> None:
        """Close the session on process exit, logging instead of raising."""
        try:
            await self.session.close()
        except BrowserMuxError as exc:
            logger.warning("Session did not close cleanly during shutdown: %s", exc.message)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


__all__ = ["Dispatcher", "ToolInvocation", "ToolResult", "new_request_id"]
