"""ASGI entrypoint for hosting the HTTP adapter under an external server."""

from __future__ import annotations

from typing import Optional

from starlette.applications import Starlette

from .config import ServerConfig, config_from_env
from .server import Runtime, build_runtime
from .transports.http import create_http_app
from .transports.stdio import create_mcp_server


def create_app(config: Optional[ServerConfig] = None, *, runtime: Optional[Runtime] = None) -> Starlette:
    """Return the HTTP application, e.g. ``uvicorn --factory browsermux.app:create_app``."""
    if runtime is None:
        runtime = build_runtime(config or config_from_env())
    config = runtime.config
    mcp_app = None
    if config.mount_mcp:
        mcp_app = create_mcp_server(runtime.dispatcher, origin="mcp-http").http_app(path="/mcp")
    return create_http_app(
        runtime.dispatcher,
        protocol="http",
        websocket=config.websocket,
        mcp_app=mcp_app,
    )


__all__ = ["create_app"]
