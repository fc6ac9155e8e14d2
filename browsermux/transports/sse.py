"""Read-only Server-Sent Events broadcast of dispatcher activity."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from ..dispatch import Dispatcher
from ..events import CONNECTED, HEARTBEAT, Event, EventBus
from .http import CORS_MIDDLEWARE, health_payload, timestamp

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 30.0


def format_sse(event: Event) -> str:
    return f"event: {event.type}\ndata: {json.dumps(event.to_dict(), default=str)}\n\n"


async def event_stream(
    bus: EventBus,
    *,
    heartbeat: float = HEARTBEAT_INTERVAL,
    request: Optional[Request] = None,
) -> AsyncIterator[str]:
    """Yield SSE frames for one subscriber until it disconnects."""
    subscription = bus.subscribe()
    try:
        yield format_sse(Event(CONNECTED, {"timestamp": timestamp()}))
        while True:
            if request is not None and await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(subscription.get(), heartbeat)
            except asyncio.TimeoutError:
                yield format_sse(Event(HEARTBEAT, {"timestamp": timestamp()}))
                continue
            yield format_sse(event)
    finally:
        subscription.close()
        logger.debug("SSE subscriber left (%s remaining)", bus.subscriber_count)


def create_sse_app(
    dispatcher: Dispatcher,
    *,
    protocol: str = "sse",
    heartbeat: float = HEARTBEAT_INTERVAL,
) -> Starlette:
    bus = dispatcher.events

    async def events(request: Request) -> StreamingResponse:
        return StreamingResponse(
            event_stream(bus, heartbeat=heartbeat, request=request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    async def history(request: Request) -> JSONResponse:
        try:
            limit = int(request.query_params.get("limit", "50"))
        except ValueError:
            limit = 50
        limit = max(1, limit)
        return JSONResponse([event.to_dict() for event in bus.history(limit)])

    async def health(request: Request) -> JSONResponse:
        payload = health_payload(dispatcher, protocol)
        payload["subscribers"] = bus.subscriber_count
        return JSONResponse(payload)

    routes = [
        Route("/events", events, methods=["GET"]),
        Route("/events/history", history, methods=["GET"]),
        Route("/health", health, methods=["GET"]),
    ]
    return Starlette(routes=routes, middleware=[CORS_MIDDLEWARE])


__all__ = ["HEARTBEAT_INTERVAL", "create_sse_app", "event_stream", "format_sse"]
