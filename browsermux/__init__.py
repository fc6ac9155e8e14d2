"""browsermux: one shared browser session behind stdio, LSP, HTTP, WebSocket and SSE."""

__version__ = "0.1.0"

from .browser import CircuitBreaker, SessionManager, SessionState  # noqa: E402
from .dispatch import Dispatcher, ToolInvocation, ToolResult  # noqa: E402
from .errors import BrowserMuxError  # noqa: E402
from .tools import ToolRegistry, ToolSpec, build_default_registry  # noqa: E402
from .workflow import WorkflowValidator  # noqa: E402

__all__ = [
    "__version__",
    "BrowserMuxError",
    "CircuitBreaker",
    "Dispatcher",
    "SessionManager",
    "SessionState",
    "ToolInvocation",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "WorkflowValidator",
    "build_default_registry",
]
