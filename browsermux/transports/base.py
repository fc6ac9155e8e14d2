"""Helpers shared by the transport adapters."""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional, Tuple

from ..dispatch import ToolResult, new_request_id
from ..errors import BrowserMuxError, TransportError

_STATUS_BY_KIND = {
    "TransportError": 400,
    "UnknownToolError": 404,
    "WorkflowViolationError": 409,
    "BrowserNotInitializedError": 409,
    "LaunchError": 502,
    "BrowserCrashedError": 502,
    "CircuitOpenError": 503,
    "SessionClosedError": 503,
    "InvocationTimeoutError": 504,
}


def http_status(result: ToolResult) -> int:
    if result.success:
        return 200
    return _STATUS_BY_KIND.get(result.error_kind or "", 500)


def error_envelope(request_id: Optional[str], error: BrowserMuxError) -> Dict[str, Any]:
    """Envelope for failures detected before a request reaches the dispatcher."""
    return {"id": request_id, "success": False, "error": error.to_dict()}


def parse_arguments(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise TransportError("Tool arguments must be a JSON object.")
    return dict(raw)


def parse_frame(raw: str) -> Tuple[str, str, Dict[str, Any], Optional[float]]:
    """Decode a ``{id, tool, args}`` frame into its parts.

    Raises :class:`TransportError` for anything that is not a well-formed
    frame; the id is attached to the error details when it could be read.
    """
    try:
        frame = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise TransportError(f"Malformed frame: {exc}") from None
    if not isinstance(frame, dict):
        raise TransportError("Frame must be a JSON object.")
    request_id = frame.get("id")
    request_id = new_request_id() if request_id is None else str(request_id)
    tool = frame.get("tool")
    if not isinstance(tool, str) or not tool:
        raise TransportError("Frame is missing the 'tool' name.", details={"id": request_id})
    try:
        args = parse_arguments(frame.get("args"))
    except TransportError as exc:
        exc.details["id"] = request_id
        raise
    timeout = frame.get("timeout")
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
        raise TransportError("timeout must be a positive number of seconds.", details={"id": request_id})
    return request_id, tool, args, float(timeout) if timeout is not None else None


__all__ = ["error_envelope", "http_status", "parse_arguments", "parse_frame"]
