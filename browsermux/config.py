"""Process configuration: defaults, ``.env``, environment and CLI flags."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional, Sequence

from dotenv import load_dotenv

PROTOCOL_CHOICES = ("auto", "stdio", "lsp", "http", "sse", "all")

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_SSE_PORT = 3001

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerConfig:
    """Everything needed to assemble and start a browsermux process."""

    protocol: str = "auto"
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    sse_port: int = DEFAULT_SSE_PORT
    websocket: bool = True
    mount_mcp: bool = True
    browser_path: Optional[str] = None
    headless: bool = True
    launch_args: tuple[str, ...] = field(default_factory=tuple)
    invocation_timeout: float = 30.0
    launch_timeout: float = 120.0
    launch_attempts: int = 3
    liveness_timeout: float = 5.0
    failure_threshold: int = 5
    cooldown: float = 30.0
    max_cooldown: float = 300.0
    failure_window: float = 300.0
    launch_on_start: bool = False
    log_level: str = "INFO"

    def with_overrides(self, **changes: object) -> "ServerConfig":
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _parse_bool(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"Expected a boolean value, got {raw!r}.")


def _parse_int(raw: Optional[str], default: int) -> int:
    return default if raw in (None, "") else int(raw)


def _parse_float(raw: Optional[str], default: float) -> float:
    return default if raw in (None, "") else float(raw)


def config_from_env(env: Optional[Mapping[str, str]] = None) -> ServerConfig:
    """Build a :class:`ServerConfig` from environment variables."""
    env = os.environ if env is None else env
    defaults = ServerConfig()
    protocol = env.get("BROWSERMUX_PROTOCOL", defaults.protocol).strip().lower()
    if protocol not in PROTOCOL_CHOICES:
        raise ValueError(
            f"BROWSERMUX_PROTOCOL must be one of {', '.join(PROTOCOL_CHOICES)}; got {protocol!r}."
        )
    launch_args = tuple(
        arg for arg in env.get("BROWSERMUX_LAUNCH_ARGS", "").split() if arg
    )
    return ServerConfig(
        protocol=protocol,
        host=env.get("BROWSERMUX_HOST", defaults.host),
        port=_parse_int(env.get("BROWSERMUX_PORT"), defaults.port),
        sse_port=_parse_int(env.get("BROWSERMUX_SSE_PORT"), defaults.sse_port),
        websocket=not _parse_bool(env.get("BROWSERMUX_NO_WEBSOCKET"), False),
        mount_mcp=_parse_bool(env.get("BROWSERMUX_MOUNT_MCP"), defaults.mount_mcp),
        browser_path=env.get("BROWSER_PATH") or None,
        headless=_parse_bool(env.get("HEADLESS"), defaults.headless),
        launch_args=launch_args,
        invocation_timeout=_parse_float(
            env.get("BROWSERMUX_INVOCATION_TIMEOUT"), defaults.invocation_timeout
        ),
        launch_timeout=_parse_float(env.get("BROWSERMUX_LAUNCH_TIMEOUT"), defaults.launch_timeout),
        launch_attempts=_parse_int(env.get("BROWSERMUX_LAUNCH_ATTEMPTS"), defaults.launch_attempts),
        liveness_timeout=_parse_float(
            env.get("BROWSERMUX_LIVENESS_TIMEOUT"), defaults.liveness_timeout
        ),
        failure_threshold=_parse_int(
            env.get("BROWSERMUX_FAILURE_THRESHOLD"), defaults.failure_threshold
        ),
        cooldown=_parse_float(env.get("BROWSERMUX_COOLDOWN"), defaults.cooldown),
        max_cooldown=_parse_float(env.get("BROWSERMUX_MAX_COOLDOWN"), defaults.max_cooldown),
        failure_window=_parse_float(env.get("BROWSERMUX_FAILURE_WINDOW"), defaults.failure_window),
        launch_on_start=_parse_bool(env.get("BROWSERMUX_LAUNCH_ON_START"), False),
        log_level=env.get("BROWSERMUX_LOG_LEVEL", defaults.log_level).upper(),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="browsermux",
        description="Serve one shared browser session over stdio, LSP, HTTP, WebSocket and SSE.",
    )
    parser.add_argument(
        "--mode",
        "-m",
        dest="protocol",
        choices=PROTOCOL_CHOICES,
        help="Protocol to serve (default: auto-detect).",
    )
    parser.add_argument("--host", help=f"HTTP bind host (default: {DEFAULT_HOST}).")
    parser.add_argument("--port", "-p", type=int, help=f"HTTP port (default: {DEFAULT_PORT}).")
    parser.add_argument(
        "--sse-port", type=int, help=f"SSE port (default: {DEFAULT_SSE_PORT})."
    )
    parser.add_argument(
        "--no-websocket",
        dest="websocket",
        action="store_false",
        default=None,
        help="Disable the WebSocket channel on the HTTP adapter.",
    )
    parser.add_argument("--browser-path", help="Browser executable (overrides BROWSER_PATH).")
    parser.add_argument(
        "--headed",
        dest="headless",
        action="store_false",
        default=None,
        help="Show the browser window.",
    )
    parser.add_argument(
        "--launch-on-start",
        action="store_true",
        default=None,
        help="Launch the browser before serving; exit non-zero if it cannot start.",
    )
    parser.add_argument(
        "--timeout",
        dest="invocation_timeout",
        type=float,
        help="Per-invocation timeout in seconds.",
    )
    parser.add_argument("--log-level", help="Logging level (default: INFO).")
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Environment file loaded before reading settings (default: .env).",
    )
    return parser


def load_config(
    argv: Optional[Sequence[str]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """Resolve configuration with CLI flags taking precedence over the environment."""
    args = build_parser().parse_args(argv)
    if env is None:
        env_file = Path(args.env_file)
        if env_file.is_file():
            load_dotenv(env_file, override=False)
            logger.debug("Loaded environment from %s", env_file)
    config = config_from_env(env)
    return config.with_overrides(
        protocol=args.protocol,
        host=args.host,
        port=args.port,
        sse_port=args.sse_port,
        websocket=args.websocket,
        browser_path=args.browser_path,
        headless=args.headless,
        launch_on_start=args.launch_on_start,
        invocation_timeout=args.invocation_timeout,
        log_level=args.log_level.upper() if args.log_level else None,
    )


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stderr; stdout belongs to the stdio/LSP channels."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


__all__ = [
    "PROTOCOL_CHOICES",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "DEFAULT_SSE_PORT",
    "ServerConfig",
    "config_from_env",
    "build_parser",
    "load_config",
    "configure_logging",
]
