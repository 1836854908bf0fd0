"""Server-sent invite notifications."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from assignmint.auth import AuthExpert
from assignmint.db_models import Expert
from assignmint.events import Event, event_bus

router = APIRouter()

KEEPALIVE_SECONDS = 30


def format_sse(event: Event) -> str:
    payload = json.dumps({"type": event.type, "task_id": event.task_id, **event.data})
    return f"event: {event.type}\ndata: {payload}\n\n"


async def _stream(request: Request, expert_id: str, queue: asyncio.Queue) -> AsyncIterator[str]:
    try:
        while not await request.is_disconnected():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
            except TimeoutError:
                yield ": keepalive\n\n"
                continue
            # None is the bus shutting down
            if event is None:
                return
            yield format_sse(event)
    finally:
        event_bus.unsubscribe(expert_id, queue)


@router.get("/v1/events", responses={401: {"description": "Unauthorized"}})
async def invite_stream(request: Request, expert: Expert = AuthExpert):
    """Stream ``task_invite`` events for the authenticated expert."""
    queue = event_bus.subscribe(expert.id)
    return StreamingResponse(_stream(request, expert.id, queue), media_type="text/event-stream")
