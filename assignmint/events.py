"""In-process event bus: per-expert subscriber queues plus an optional webhook hook."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

logger = logging.getLogger("assignmint.events")

MAX_QUEUE_SIZE = 100


@dataclass
class Event:
    type: str
    task_id: str
    data: dict = field(default_factory=dict)


WebhookCallback = Callable[[str, Event], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._webhook_callback: WebhookCallback | None = None
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, expert_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=MAX_QUEUE_SIZE)
        self._subscribers[expert_id].add(queue)
        return queue

    def unsubscribe(self, expert_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(expert_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[expert_id]

    def set_webhook_callback(self, callback: WebhookCallback | None) -> None:
        self._webhook_callback = callback

    def publish(self, expert_id: str, event: Event) -> None:
        for queue in list(self._subscribers.get(expert_id, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for %s: queue full", event.type, expert_id)

        if self._webhook_callback is not None:
            task = asyncio.get_running_loop().create_task(
                self._deliver(self._webhook_callback, expert_id, event)
            )
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, callback: WebhookCallback, expert_id: str, event: Event) -> None:
        try:
            await callback(expert_id, event)
        except Exception:
            logger.exception("Webhook callback failed for %s (%s)", expert_id, event.type)

    async def close(self) -> None:
        """Wake SSE streams and cancel in-flight webhook deliveries."""
        for queues in self._subscribers.values():
            for queue in queues:
                with contextlib.suppress(asyncio.QueueFull):
                    queue.put_nowait(None)
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()


event_bus = EventBus()
