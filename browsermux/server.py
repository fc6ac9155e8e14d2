"""Process assembly: build the runtime, pick a protocol and serve it."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

import uvicorn

from .browser import CircuitBreaker, PlaywrightLauncher, RetryPolicy, SessionManager
from .browser.launcher import Launcher
from .config import ServerConfig
from .detect import DetectionContext, detect_protocol
from .dispatch import Dispatcher
from .errors import BrowserMuxError
from .tools import build_default_registry
from .transports.http import create_http_app
from .transports.lsp import serve_lsp
from .transports.sse import create_sse_app
from .transports.stdio import create_mcp_server, serve_stdio

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_LAUNCH_FAILED = 1


@dataclass
class Runtime:
    """Everything one process owns: configuration and the dispatcher it serves."""

    config: ServerConfig
    dispatcher: Dispatcher

    @property
    def session(self) -> SessionManager:
        return self.dispatcher.session


def build_runtime(config: ServerConfig, *, launcher: Optional[Launcher] = None) -> Runtime:
    if launcher is None:
        launcher = PlaywrightLauncher(
            headless=config.headless,
            executable_path=config.browser_path,
            launch_args=config.launch_args or None,
            default_timeout_ms=int(config.invocation_timeout * 1000),
            handshake_timeout=config.launch_timeout,
        )
    breaker = CircuitBreaker(
        failure_threshold=config.failure_threshold,
        cooldown=config.cooldown,
        max_cooldown=config.max_cooldown,
        window=config.failure_window,
    )
    session = SessionManager(
        launcher,
        breaker=breaker,
        retry=RetryPolicy(max_attempts=config.launch_attempts),
        liveness_timeout=config.liveness_timeout or None,
    )
    dispatcher = Dispatcher(
        session,
        build_default_registry(),
        default_timeout=config.invocation_timeout,
    )
    return Runtime(config=config, dispatcher=dispatcher)


def resolve_protocol(config: ServerConfig, ctx: Optional[DetectionContext] = None) -> str:
    """Return the protocol to serve; ``auto`` runs the detector chain once."""
    if ctx is None:
        ctx = DetectionContext.from_process(config.protocol)
    return detect_protocol(ctx).protocol or "http"


async def launch_on_start(runtime: Runtime) -> bool:
    """Launch the browser before serving; ``False`` means the process should exit."""
    try:
        await runtime.session.init()
    except BrowserMuxError as exc:
        logger.error("Browser could not be launched at startup: %s", exc.message)
        return False
    return True


def _uvicorn_server(app, config: ServerConfig, port: int) -> uvicorn.Server:
    return uvicorn.Server(
        uvicorn.Config(
            app=app,
            host=config.host,
            port=port,
            log_level=config.log_level.lower(),
            access_log=False,
            log_config=None,
        )
    )


def build_servers(runtime: Runtime, protocol: str) -> List[uvicorn.Server]:
    config = runtime.config
    dispatcher = runtime.dispatcher
    with_sse = protocol in ("sse", "all")
    websocket = config.websocket and protocol in ("http", "all")
    mcp_app = None
    if config.mount_mcp:
        mcp_app = create_mcp_server(dispatcher, origin="mcp-http").http_app(path="/mcp")
    transports = ["http"]
    if websocket:
        transports.append("websocket")
    if with_sse:
        transports.append("sse")
    if mcp_app is not None:
        transports.append("mcp")
    http_app = create_http_app(
        dispatcher,
        protocol=protocol,
        websocket=websocket,
        mcp_app=mcp_app,
        transports=transports,
    )
    servers = [_uvicorn_server(http_app, config, config.port)]
    logger.info("HTTP adapter on http://%s:%s (%s)", config.host, config.port, ", ".join(transports))
    if with_sse:
        servers.append(_uvicorn_server(create_sse_app(dispatcher, protocol=protocol), config, config.sse_port))
        logger.info("SSE adapter on http://%s:%s/events", config.host, config.sse_port)
    return servers


async def _serve_until_first_exit(servers: List[uvicorn.Server]) -> None:
    tasks = [asyncio.create_task(server.serve()) for server in servers]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for server in servers:
            server.should_exit = True
    await asyncio.gather(*tasks, return_exceptions=True)
    for task in done:
        task.result()


async def serve_async(runtime: Runtime, protocol: str) -> int:
    if runtime.config.launch_on_start and not await launch_on_start(runtime):
        await runtime.dispatcher.shutdown()
        return EXIT_LAUNCH_FAILED
    if protocol == "stdio":
        await serve_stdio(runtime.dispatcher)
        return EXIT_OK
    try:
        await _serve_until_first_exit(build_servers(runtime, protocol))
    finally:
        await runtime.dispatcher.shutdown()
    return EXIT_OK


def run(config: ServerConfig, *, launcher: Optional[Launcher] = None) -> int:
    """Serve ``config`` until shutdown and return the process exit code."""
    protocol = resolve_protocol(config)
    runtime = build_runtime(config, launcher=launcher)
    if protocol == "lsp":
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            if config.launch_on_start and not loop.run_until_complete(launch_on_start(runtime)):
                loop.run_until_complete(runtime.dispatcher.shutdown())
                return EXIT_LAUNCH_FAILED
            serve_lsp(runtime.dispatcher, loop)
        finally:
            loop.close()
        return EXIT_OK
    return asyncio.run(serve_async(runtime, protocol))


__all__ = [
    "EXIT_LAUNCH_FAILED",
    "EXIT_OK",
    "Runtime",
    "build_runtime",
    "build_servers",
    "launch_on_start",
    "resolve_protocol",
    "run",
    "serve_async",
]
