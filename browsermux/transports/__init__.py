"""Transport adapters that normalize client requests into tool invocations."""

from .http import create_http_app
from .lsp import LspCommandBridge, create_language_server, serve_lsp
from .sse import create_sse_app, event_stream
from .stdio import create_mcp_server, serve_stdio

__all__ = [
    "LspCommandBridge",
    "create_http_app",
    "create_language_server",
    "create_mcp_server",
    "create_sse_app",
    "event_stream",
    "serve_lsp",
    "serve_stdio",
]
