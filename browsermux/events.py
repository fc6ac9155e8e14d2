"""In-process event bus feeding the SSE broadcast channel."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

TOOL_START = "tool_start"
TOOL_SUCCESS = "tool_success"
TOOL_ERROR = "tool_error"
BROWSER_INIT_START = "browser_init_start"
BROWSER_INIT_SUCCESS = "browser_init_success"
BROWSER_INIT_ERROR = "browser_init_error"
BROWSER_CLOSED = "browser_closed"
BROWSER_CRASHED = "browser_crashed"
CONNECTED = "connected"
HEARTBEAT = "heartbeat"


@dataclass(frozen=True)
class Event:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "timestamp": self.timestamp, "data": self.data}


class Subscription:
    """A subscriber's bounded inbox; events are dropped when it is full."""

    def __init__(self, bus: "EventBus", maxsize: int) -> None:
        self._bus = bus
        self.queue: "asyncio.Queue[Event]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    async def get(self) -> Event:
        return await self.queue.get()

    def close(self) -> None:
        self._bus.unsubscribe(self)


class EventBus:
    """Fan published events out to subscribers and keep a bounded history."""

    def __init__(self, *, history_size: int = 200, queue_size: int = 100) -> None:
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._subscribers: Set[Subscription] = set()
        self._queue_size = queue_size

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def history(self, limit: Optional[int] = None) -> List[Event]:
        events = list(self._history)
        if limit is None:
            return events
        return events[-limit:] if limit > 0 else []

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self._queue_size)
        self._subscribers.add(subscription)
        logger.debug("Event subscriber added (%s total)", len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)

    def publish(self, event_type: str, **data: Any) -> Event:
        event = Event(event_type, data)
        self._history.append(event)
        for subscription in list(self._subscribers):
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                subscription.dropped += 1
                logger.warning("Dropping %s event for a slow subscriber", event_type)
        return event


__all__ = [
    "BROWSER_CLOSED",
    "BROWSER_CRASHED",
    "BROWSER_INIT_ERROR",
    "BROWSER_INIT_START",
    "BROWSER_INIT_SUCCESS",
    "CONNECTED",
    "HEARTBEAT",
    "TOOL_ERROR",
    "TOOL_START",
    "TOOL_SUCCESS",
    "Event",
    "EventBus",
    "Subscription",
]
