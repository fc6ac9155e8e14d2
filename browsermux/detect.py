"""Startup protocol detection.

A fixed, ordered chain of detectors inspects a :class:`DetectionContext`
snapshot once at startup.  The match with the highest confidence wins; equal
confidences go to the detector declared first.  :class:`FallbackDetector`
always matches, so the chain always yields a protocol.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol, Sequence, Tuple

import psutil

logger = logging.getLogger(__name__)

STDIO = "stdio"
LSP = "lsp"
HTTP = "http"


@dataclass(frozen=True)
class DetectionContext:
    explicit: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict)
    stdin_isatty: bool = True
    stdout_isatty: bool = True
    parent_name: str = ""
    parent_cmdline: str = ""

    @classmethod
    def from_process(cls, explicit: Optional[str] = None) -> "DetectionContext":
        name, cmdline = _parent_process()
        return cls(
            explicit=explicit,
            env=dict(os.environ),
            stdin_isatty=_isatty(sys.stdin),
            stdout_isatty=_isatty(sys.stdout),
            parent_name=name,
            parent_cmdline=cmdline,
        )


def _isatty(stream) -> bool:
    try:
        return bool(stream and stream.isatty())
    except (AttributeError, ValueError):
        return False


def _parent_process() -> Tuple[str, str]:
    try:
        parent = psutil.Process().parent()
        if parent is None:
            return "", ""
        return parent.name().lower(), " ".join(parent.cmdline()).lower()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return "", ""


@dataclass(frozen=True)
class Detection:
    matched: bool
    confidence: int = 0
    protocol: Optional[str] = None
    source: str = ""
    reason: str = ""


NO_MATCH = Detection(False)


class Detector(Protocol):
    name: str

    def detect(self, ctx: DetectionContext) -> Detection: ...


class ExplicitFlagDetector:
    name = "explicit"

    def detect(self, ctx: DetectionContext) -> Detection:
        if ctx.explicit and ctx.explicit != "auto":
            return Detection(True, 100, ctx.explicit, self.name, f"--mode {ctx.explicit}")
        return NO_MATCH


# (environment variables, protocol, confidence, client)
_ENV_RULES: Tuple[Tuple[Tuple[str, ...], str, int, str], ...] = (
    (("CLAUDE_DESKTOP", "CLAUDE_APP"), STDIO, 90, "claude-desktop"),
    (("CURSOR_IDE", "CURSOR_SESSION", "CURSOR_USER_DATA"), STDIO, 90, "cursor"),
    (("WINDSURF_IDE", "WINDSURF_SESSION", "WINDSURF_CONFIG"), STDIO, 90, "windsurf"),
    (("CLINE_MODE", "CLAUDE_DEV", "CLINE_MCP_SERVER"), STDIO, 90, "cline"),
    (("ZED_EDITOR", "ZED", "ZED_TERM"), LSP, 85, "zed"),
    (("VSCODE_PID", "VSCODE_IPC_HOOK", "VSCODE_CWD"), LSP, 80, "vscode"),
)


class EnvironmentDetector:
    name = "environment"

    def __init__(self, rules=_ENV_RULES) -> None:
        self._rules = rules

    def detect(self, ctx: DetectionContext) -> Detection:
        for variables, protocol, confidence, client in self._rules:
            present = [var for var in variables if ctx.env.get(var)]
            if present:
                return Detection(True, confidence, protocol, self.name, f"{client} ({present[0]})")
        return NO_MATCH


# (substring, protocol, confidence); command line first, then process name.
_CMDLINE_RULES = (
    ("claude-dev", STDIO, 85),
    ("cline", STDIO, 85),
    ("claude", STDIO, 90),
    ("cursor", STDIO, 90),
    ("windsurf", STDIO, 90),
)
_PARENT_NAME_RULES = (
    ("claude", STDIO, 85),
    ("cursor", STDIO, 85),
    ("windsurf", STDIO, 85),
    ("zed", LSP, 85),
    ("code", LSP, 80),
)


class ParentProcessDetector:
    name = "parent_process"

    def detect(self, ctx: DetectionContext) -> Detection:
        for needle, protocol, confidence in _CMDLINE_RULES:
            if needle in ctx.parent_cmdline:
                return Detection(True, confidence, protocol, self.name, f"parent command line has {needle!r}")
        for needle, protocol, confidence in _PARENT_NAME_RULES:
            if needle in ctx.parent_name:
                return Detection(True, confidence, protocol, self.name, f"parent process {ctx.parent_name!r}")
        return NO_MATCH


class PipedStdioDetector:
    name = "piped_stdio"

    def detect(self, ctx: DetectionContext) -> Detection:
        if not ctx.stdin_isatty and not ctx.stdout_isatty:
            return Detection(True, 70, STDIO, self.name, "stdin and stdout are pipes")
        return NO_MATCH


class FallbackDetector:
    name = "fallback"

    def detect(self, ctx: DetectionContext) -> Detection:
        return Detection(True, 50, HTTP, self.name, "no client signals found")


DEFAULT_CHAIN: Tuple[Detector, ...] = (
    ExplicitFlagDetector(),
    EnvironmentDetector(),
    ParentProcessDetector(),
    PipedStdioDetector(),
    FallbackDetector(),
)


def detect_protocol(
    ctx: DetectionContext, chain: Sequence[Detector] = DEFAULT_CHAIN
) -> Detection:
    """Run every detector once and return the winning detection."""
    best: Optional[Detection] = None
    for detector in chain:
        result = detector.detect(ctx)
        logger.debug("Detector %s: %s", detector.name, result)
        if result.matched and (best is None or result.confidence > best.confidence):
            best = result
    if best is None:
        best = FallbackDetector().detect(ctx)
    logger.info(
        "Selected protocol %s via %s (%s%% confidence: %s)",
        best.protocol,
        best.source,
        best.confidence,
        best.reason,
    )
    return best


__all__ = [
    "DEFAULT_CHAIN",
    "Detection",
    "DetectionContext",
    "Detector",
    "EnvironmentDetector",
    "ExplicitFlagDetector",
    "FallbackDetector",
    "ParentProcessDetector",
    "PipedStdioDetector",
    "detect_protocol",
]
