"""Tool registry: name -> schema, gating flags and handler."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional

from .browser import actions

Handler = Callable[[Any, Mapping[str, Any]], Awaitable[Dict[str, Any]]]

LIFECYCLE_INIT = "init"
LIFECYCLE_CLOSE = "close"


@dataclass(frozen=True)
class ToolSpec:
    """Metadata and handler for one registered tool.

    ``lifecycle`` marks ``browser_init``/``browser_close``; those tools are
    executed by the session manager and carry no handler.
    """

    name: str
    description: str
    schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    requires_ready: bool = True
    handler: Optional[Handler] = None
    lifecycle: Optional[str] = None

    def describe(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "schema": self.schema}


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: Dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> ToolSpec:
        if spec.name in self._tools:
            raise ValueError(f"Tool {spec.name!r} is already registered.")
        if spec.lifecycle is None and spec.handler is None:
            raise ValueError(f"Tool {spec.name!r} needs a handler.")
        self._tools[spec.name] = spec
        return spec

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    def list(self) -> List[ToolSpec]:
        return list(self._tools.values())

    def names(self) -> List[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


def _object(properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


_TIMEOUT_PROPERTY = {"type": "number", "description": "Timeout in milliseconds (default 30000)."}


def build_default_registry() -> ToolRegistry:
    """Registry with the lifecycle tools and the built-in page handlers."""
    registry = ToolRegistry()
    registry.register(
        ToolSpec(
            name="browser_init",
            description="Launch the shared browser session. Must be called before any other tool.",
            schema=_object(
                {
                    "headless": {
                        "type": "boolean",
                        "description": "Run without a visible window (overrides HEADLESS).",
                    },
                    "proxy": {"type": "string", "description": "Proxy server URL."},
                    "executable_path": {
                        "type": "string",
                        "description": "Browser executable (overrides BROWSER_PATH).",
                    },
                }
            ),
            requires_ready=False,
            lifecycle=LIFECYCLE_INIT,
        )
    )
    registry.register(
        ToolSpec(
            name="browser_close",
            description="Close the shared browser session.",
            lifecycle=LIFECYCLE_CLOSE,
        )
    )
    registry.register(
        ToolSpec(
            name="navigate",
            description="Navigate to a URL and return the final location and title.",
            schema=_object(
                {
                    "url": {"type": "string", "description": "URL to open."},
                    "waitUntil": {
                        "type": "string",
                        "enum": ["load", "domcontentloaded", "networkidle", "commit"],
                        "description": "Load state to wait for (default domcontentloaded).",
                    },
                },
                ["url"],
            ),
            handler=actions.navigate,
        )
    )
    registry.register(
        ToolSpec(
            name="get_content",
            description="Return the page HTML or visible text, optionally for one selector.",
            schema=_object(
                {
                    "type": {"type": "string", "enum": ["html", "text"]},
                    "selector": {"type": "string", "description": "Limit to this element."},
                    "timeout": _TIMEOUT_PROPERTY,
                }
            ),
            handler=actions.get_content,
        )
    )
    registry.register(
        ToolSpec(
            name="click",
            description="Click an element.",
            schema=_object(
                {
                    "selector": {"type": "string"},
                    "waitForNavigation": {"type": "boolean"},
                    "timeout": _TIMEOUT_PROPERTY,
                },
                ["selector"],
            ),
            handler=actions.click,
        )
    )
    registry.register(
        ToolSpec(
            name="type",
            description="Type text into an input element.",
            schema=_object(
                {
                    "selector": {"type": "string"},
                    "text": {"type": "string"},
                    "delay": {"type": "number", "description": "Delay between keystrokes in ms."},
                    "clear": {"type": "boolean", "description": "Clear the field first."},
                    "timeout": _TIMEOUT_PROPERTY,
                },
                ["selector", "text"],
            ),
            handler=actions.type_text,
        )
    )
    registry.register(
        ToolSpec(
            name="press_key",
            description="Press a key, optionally with modifiers and a focused element.",
            schema=_object(
                {
                    "key": {"type": "string", "description": "Key name, e.g. Enter or ArrowDown."},
                    "selector": {"type": "string"},
                    "modifiers": {
                        "type": "array",
                        "items": {"type": "string", "enum": ["Control", "Shift", "Alt", "Meta"]},
                    },
                    "timeout": _TIMEOUT_PROPERTY,
                },
                ["key"],
            ),
            handler=actions.press_key,
        )
    )
    registry.register(
        ToolSpec(
            name="wait",
            description="Wait for a selector, a navigation or a fixed number of milliseconds.",
            schema=_object(
                {
                    "type": {"type": "string", "enum": ["selector", "navigation", "timeout"]},
                    "value": {
                        "type": ["string", "number"],
                        "description": "Selector, load state or milliseconds, depending on type.",
                    },
                    "state": {
                        "type": "string",
                        "enum": ["attached", "detached", "visible", "hidden"],
                    },
                    "timeout": _TIMEOUT_PROPERTY,
                },
                ["type"],
            ),
            handler=actions.wait,
        )
    )
    registry.register(
        ToolSpec(
            name="find_selector",
            description="Find elements by visible text and return CSS selectors for them.",
            schema=_object(
                {
                    "text": {"type": "string"},
                    "elementType": {"type": "string", "description": "Tag name filter, e.g. button."},
                    "exact": {"type": "boolean"},
                },
                ["text"],
            ),
            handler=actions.find_selector,
        )
    )
    registry.register(
        ToolSpec(
            name="evaluate",
            description="Evaluate a JavaScript expression or function in the page.",
            schema=_object(
                {
                    "script": {"type": "string"},
                    "arg": {"description": "Argument passed to a function script."},
                },
                ["script"],
            ),
            handler=actions.evaluate,
        )
    )
    registry.register(
        ToolSpec(
            name="list_links",
            description="List anchor tags on the current page with basic metadata.",
            schema=_object(
                {
                    "limit": {"type": "integer"},
                    "rootSelector": {"type": "string"},
                    "linkSelector": {"type": "string"},
                }
            ),
            handler=actions.list_links,
        )
    )
    return registry


__all__ = [
    "Handler",
    "LIFECYCLE_CLOSE",
    "LIFECYCLE_INIT",
    "ToolRegistry",
    "ToolSpec",
    "build_default_registry",
]
