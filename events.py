"""
In-process fan-out of change events to connected WebSocket clients.

Publishers are request handlers running in FastAPI's thread pool; subscribers
live on the event loop serving their socket. ``publish`` therefore never
touches a subscriber queue directly: it schedules the put on the subscriber's
loop with ``call_soon_threadsafe`` and returns. Callbacks scheduled from one
thread run in the order they were scheduled, which keeps each subscriber's
stream in publish order.

Delivery is at most once. There is no backlog; a client that connects late
must fetch current state over HTTP.
"""

import asyncio
import logging
import threading
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

import config

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    PRODUCT_ADDED = "product-added"
    PRODUCT_UPDATED = "product-updated"
    PRODUCT_DELETED = "product-deleted"
    ORDER_ADDED = "order-added"
    ORDER_UPDATED = "order-updated"
    ORDER_DELETED = "order-deleted"
    TRACKING_ADDED = "tracking-added"
    TRACKING_UPDATED = "tracking-updated"
    TRACKING_DELETED = "tracking-deleted"


class Subscription:
    def __init__(self, loop: asyncio.AbstractEventLoop, maxsize: int):
        self.id = uuid.uuid4().hex
        self.loop = loop
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=maxsize)

    def deliver(self, message: Dict[str, Any]) -> None:
        self.loop.call_soon_threadsafe(self._put, message)

    def _put(self, message: Dict[str, Any]) -> None:
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Subscriber %s buffer full, dropping %s", self.id, message["event"])

    async def next_message(self) -> Dict[str, Any]:
        return await self.queue.get()


class EventBus:
    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = config.SUBSCRIBER_QUEUE_SIZE if queue_size is None else queue_size
        self._lock = threading.Lock()
        self._subscribers: Dict[str, Subscription] = {}

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> Subscription:
        """Register a subscriber bound to ``loop`` (the running loop by default)."""
        sub = Subscription(loop or asyncio.get_running_loop(), self.queue_size)
        with self._lock:
            self._subscribers[sub.id] = sub
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers.pop(sub.id, None)

    def publish(self, kind: EventKind, payload: Any) -> None:
        message = {"event": EventKind(kind).value, "data": payload}
        with self._lock:
            targets: List[Subscription] = list(self._subscribers.values())
        for sub in targets:
            try:
                sub.deliver(message)
            except RuntimeError as e:
                # loop already closed; the socket handler will unsubscribe
                logger.warning("Could not deliver %s to %s: %s", message["event"], sub.id, e)
