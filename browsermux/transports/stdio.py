"""MCP adapter: every registry entry becomes a FastMCP tool.

The same :class:`fastmcp.FastMCP` instance serves newline-delimited JSON-RPC
on stdio and, mounted on the HTTP adapter, streamable HTTP at ``/mcp``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastmcp import FastMCP
from fastmcp.server.dependencies import get_context
from fastmcp.tools.tool import Tool, ToolResult
from mcp.types import TextContent
from pydantic import PrivateAttr

from ..dispatch import Dispatcher, ToolInvocation
from ..tools import ToolSpec

logger = logging.getLogger(__name__)

SERVER_NAME = "browsermux"


def _request_id() -> Optional[str]:
    try:
        return str(get_context().request_id)
    except (RuntimeError, ValueError, LookupError):
        return None


class DispatchedTool(Tool):
    """FastMCP tool whose schema comes from the registry and whose body is the dispatcher."""

    _dispatcher: Dispatcher = PrivateAttr()
    _origin: str = PrivateAttr(default="stdio")

    @classmethod
    def from_spec(cls, spec: ToolSpec, dispatcher: Dispatcher, *, origin: str = "stdio") -> "DispatchedTool":
        tool = cls(name=spec.name, description=spec.description, parameters=spec.schema)
        tool._dispatcher = dispatcher
        tool._origin = origin
        return tool

    async def run(self, arguments: Dict[str, Any]) -> ToolResult:
        invocation = ToolInvocation.create(
            self.name,
            arguments,
            origin=self._origin,
            request_id=_request_id(),
        )
        result = await self._dispatcher.dispatch(invocation)
        envelope = result.to_dict()
        # Failures stay in the envelope so MCP clients see the same body as HTTP clients.
        return ToolResult(
            content=[TextContent(type="text", text=json.dumps(envelope))],
            structured_content=envelope,
        )


def create_mcp_server(dispatcher: Dispatcher, *, origin: str = "stdio") -> FastMCP:
    mcp = FastMCP(name=SERVER_NAME)
    for spec in dispatcher.registry:
        mcp.add_tool(DispatchedTool.from_spec(spec, dispatcher, origin=origin))
    return mcp


async def serve_stdio(dispatcher: Dispatcher) -> None:
    """Serve MCP on stdin/stdout until the client disconnects."""
    mcp = create_mcp_server(dispatcher)
    logger.info("Serving %s tools over MCP stdio", len(dispatcher.registry))
    try:
        await mcp.run_async(transport="stdio")
    finally:
        await dispatcher.shutdown()


__all__ = ["DispatchedTool", "SERVER_NAME", "create_mcp_server", "serve_stdio"]
