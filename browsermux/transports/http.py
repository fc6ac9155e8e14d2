"""HTTP/REST and WebSocket adapter (Starlette).

``POST /tools/{name}`` takes the tool arguments as its JSON body and answers
with the canonical envelope; the status code reflects the error kind.
``/ws`` accepts ``{id, tool, args}`` frames and answers each one as soon as it
completes, so responses may arrive out of order.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Sequence, Set

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import BaseRoute, Mount, Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from .. import __version__
from ..dispatch import Dispatcher, ToolInvocation
from ..errors import TransportError
from .base import error_envelope, http_status, parse_arguments, parse_frame

logger = logging.getLogger(__name__)

# Legacy REST paths kept for clients written against the /browser/* API.
ROUTE_ALIASES = {
    "init": "browser_init",
    "navigate": "navigate",
    "click": "click",
    "type": "type",
    "get-content": "get_content",
    "close": "browser_close",
}

CORS_MIDDLEWARE = Middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S")


def health_payload(dispatcher: Dispatcher, protocol: str) -> Dict[str, Any]:
    return {
        "status": "ok",
        "timestamp": timestamp(),
        "protocol": protocol,
        **dispatcher.snapshot(),
    }


async def _read_arguments(request: Request) -> Dict[str, Any]:
    body = await request.body()
    if not body.strip():
        return {}
    try:
        raw = json.loads(body)
    except ValueError as exc:
        raise TransportError(f"Request body is not valid JSON: {exc}") from None
    return parse_arguments(raw)


class HttpAdapter:
    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        protocol: str = "http",
        transports: Sequence[str] = ("http",),
    ) -> None:
        self.dispatcher = dispatcher
        self.protocol = protocol
        self.transports = list(transports)

    async def health(self, request: Request) -> JSONResponse:
        return JSONResponse(health_payload(self.dispatcher, self.protocol))

    async def info(self, request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "name": "browsermux",
                "version": __version__,
                "protocol": self.protocol,
                "transports": self.transports,
                "tools": len(self.dispatcher.registry),
            }
        )

    async def list_tools(self, request: Request) -> JSONResponse:
        return JSONResponse(self.dispatcher.describe_tools())

    async def call_tool(self, request: Request) -> JSONResponse:
        return await self._invoke(request, request.path_params["name"])

    async def call_alias(self, request: Request) -> JSONResponse:
        alias = request.path_params["alias"]
        tool = ROUTE_ALIASES.get(alias, alias.replace("-", "_"))
        return await self._invoke(request, tool)

    async def _invoke(self, request: Request, tool: str) -> JSONResponse:
        request_id = request.headers.get("x-request-id")
        try:
            args = await _read_arguments(request)
        except TransportError as exc:
            return JSONResponse(error_envelope(request_id, exc), status_code=400)
        invocation = ToolInvocation.create(tool, args, origin="http", request_id=request_id)
        result = await self.dispatcher.dispatch(invocation)
        return JSONResponse(result.to_dict(), status_code=http_status(result))

    async def websocket(self, websocket: WebSocket) -> None:
        await websocket.accept()
        send_lock = asyncio.Lock()
        pending: Set[asyncio.Task] = set()

        async def send(payload: Dict[str, Any]) -> None:
            async with send_lock:
                await websocket.send_json(payload)

        async def run(invocation: ToolInvocation) -> None:
            result = await self.dispatcher.dispatch(invocation)
            try:
                await send(result.to_dict())
            except (WebSocketDisconnect, RuntimeError):
                logger.debug("WebSocket closed before %s could be answered", invocation.id)

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    request_id, tool, args, timeout = parse_frame(raw)
                except TransportError as exc:
                    await send(error_envelope(exc.details.get("id"), exc))
                    continue
                invocation = ToolInvocation.create(
                    tool, args, origin="websocket", request_id=request_id, timeout=timeout
                )
                task = asyncio.create_task(run(invocation))
                pending.add(task)
                task.add_done_callback(pending.discard)
        except WebSocketDisconnect:
            logger.debug("WebSocket client disconnected")
        finally:
            for task in list(pending):
                task.cancel()

    def routes(self, *, websocket: bool = True) -> list[BaseRoute]:
        routes: list[BaseRoute] = [
            Route("/health", self.health, methods=["GET"]),
            Route("/info", self.info, methods=["GET"]),
            Route("/tools", self.list_tools, methods=["GET"]),
            Route("/tools/{name}", self.call_tool, methods=["POST"]),
            Route("/browser/{alias}", self.call_alias, methods=["POST"]),
        ]
        if websocket:
            routes.append(WebSocketRoute("/ws", self.websocket))
        return routes


def create_http_app(
    dispatcher: Dispatcher,
    *,
    protocol: str = "http",
    websocket: bool = True,
    mcp_app: Optional[Starlette] = None,
    transports: Optional[Sequence[str]] = None,
) -> Starlette:
    """Build the HTTP (and optional WebSocket / MCP) application."""
    if transports is None:
        transports = ["http"] + (["websocket"] if websocket else []) + (["mcp"] if mcp_app else [])
    adapter = HttpAdapter(dispatcher, protocol=protocol, transports=transports)
    routes = adapter.routes(websocket=websocket)
    if mcp_app is not None:
        routes.append(Mount("/", app=mcp_app))

    @asynccontextmanager
    async def lifespan(app: Starlette):
        try:
            if mcp_app is not None:
                async with mcp_app.lifespan(mcp_app):
                    yield
            else:
                yield
        finally:
            await dispatcher.shutdown()

    return Starlette(routes=routes, middleware=[CORS_MIDDLEWARE], lifespan=lifespan)


__all__ = ["HttpAdapter", "ROUTE_ALIASES", "create_http_app", "health_payload", "timestamp"]
