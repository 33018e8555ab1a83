"""
Real-time event channel.

The crawl core calls `publish()`, which only puts the event on an unbounded
queue and never blocks. A separate drain task fans events out to
subscribers: per-consumer queues (used by WebSocket connections) and async
callbacks. Delivery is fire-and-forget.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pagelens.scheduler.models import utc_now
from pagelens.utils.logging import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    """Kinds of events pushed to observers."""

    STATUS_UPDATE = "status_update"
    LOG_ENTRY = "log_entry"
    SCREENSHOT_UPDATE = "screenshot_update"


@dataclass
class Event:
    type: EventType
    payload: dict[str, Any]
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "payload": self.payload, "timestamp": self.timestamp}


EventCallback = Callable[[Event], Awaitable[None]]


class EventBroadcaster:
    """Unbounded fan-out sink for crawl events."""

    def __init__(self, subscriber_queue_size: int = 0):
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._subscriber_queue_size = subscriber_queue_size
        self._subscribers: set[asyncio.Queue[Event]] = set()
        self._callbacks: list[EventCallback] = []
        self._drain_task: asyncio.Task | None = None

    # ============================================================
    # Publishing
    # ============================================================

    def publish(self, event_type: EventType, payload: dict[str, Any]) -> Event:
        """Queue an event for delivery. Never blocks."""
        event = Event(type=event_type, payload=payload)
        self._queue.put_nowait(event)
        return event

    def status_update(
        self,
        job_id: str,
        status: str,
        pages_processed: int,
        **extra: Any,
    ) -> Event:
        return self.publish(
            EventType.STATUS_UPDATE,
            {
                "job_id": job_id,
                "status": status,
                "pages_processed": pages_processed,
                "timestamp": utc_now(),
                **extra,
            },
        )

    def log_entry(
        self,
        level: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> Event:
        return self.publish(
            EventType.LOG_ENTRY,
            {
                "level": level,
                "message": message,
                "data": data or {},
                "timestamp": utc_now(),
            },
        )

    def screenshot_update(self, job_id: str, url: str, screenshot_ref: str, **extra: Any) -> Event:
        return self.publish(
            EventType.SCREENSHOT_UPDATE,
            {
                "job_id": job_id,
                "url": url,
                "screenshot_ref": screenshot_ref,
                "timestamp": utc_now(),
                **extra,
            },
        )

    # ============================================================
    # Subscribing
    # ============================================================

    def subscribe(self) -> asyncio.Queue[Event]:
        """Register a consumer queue that receives every subsequent event."""
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=self._subscriber_queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Event]) -> None:
        self._subscribers.discard(queue)

    def add_callback(self, callback: EventCallback) -> None:
        self._callbacks.append(callback)

    def remove_callback(self, callback: EventCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers) + len(self._callbacks)

    # ============================================================
    # Drain task
    # ============================================================

    def start(self) -> None:
        """Start the drain task on the running loop."""
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain(), name="event-broadcaster")

    async def stop(self) -> None:
        """Deliver queued events, then stop the drain task."""
        if self._drain_task is None:
            return
        await self._queue.join()
        self._drain_task.cancel()
        try:
            await self._drain_task
        except asyncio.CancelledError:
            pass
        self._drain_task = None

    async def flush(self) -> None:
        """Wait until every queued event has been delivered."""
        await self._queue.join()

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: Event) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug("Subscriber queue full, event dropped", event_type=event.type.value)

        for callback in list(self._callbacks):
            try:
                await callback(event)
            except Exception as e:
                logger.warning(
                    "Event callback failed",
                    event_type=event.type.value,
                    error=str(e),
                )
