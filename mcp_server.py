"""Top-level FastMCP server entrypoint for browsermux.

FastMCP Cloud expects to inspect a module path like ``mcp_server:mcp``.  This
thin wrapper builds the runtime from the environment and exposes its MCP server.
"""

from browsermux.config import config_from_env
from browsermux.server import build_runtime
from browsermux.transports.stdio import create_mcp_server

runtime = build_runtime(config_from_env())
mcp = create_mcp_server(runtime.dispatcher)

__all__ = ["mcp", "runtime"]
