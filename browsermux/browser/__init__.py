"""Browser process ownership: launcher, circuit breaker, session and handlers."""

from .breaker import BreakerState, CircuitBreaker, RetryPolicy
from .launcher import BrowserHandle, Launcher, PlaywrightHandle, PlaywrightLauncher
from .session import Session, SessionEvent, SessionManager, SessionState

__all__ = [
    "BreakerState",
    "BrowserHandle",
    "CircuitBreaker",
    "Launcher",
    "PlaywrightHandle",
    "PlaywrightLauncher",
    "RetryPolicy",
    "Session",
    "SessionEvent",
    "SessionManager",
    "SessionState",
]
