"""
Broadcast Publisher
===================
Fire-and-forget fan-out to in-process subscribers (the WebSocket
endpoint subscribes one queue per connection). No acknowledgment,
no replay for late subscribers, and a full subscriber queue drops
the payload rather than slowing the publisher down.
"""

import asyncio
import logging
import threading
from typing import Any, Protocol


logger = logging.getLogger(__name__)

LIVE_STATS_CHANNEL = "live-stats"


class BroadcastPublisher(Protocol):
    def publish(self, channel: str, payload: dict[str, Any]) -> None:
        ...


class _Subscription:
    def __init__(self, queue: asyncio.Queue, loop: asyncio.AbstractEventLoop):
        self.queue = queue
        self.loop = loop

    def offer(self, payload: dict[str, Any]) -> None:
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.debug("Subscriber queue full, dropping broadcast")


class InMemoryBroadcaster:
    """Channel -> subscriber queues. Safe to publish from any thread."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[_Subscription]] = {}

    def subscribe(self, channel: str) -> asyncio.Queue:
        """Must be called from the event loop that will read the queue."""
        queue = asyncio.Queue(maxsize=self.queue_size)
        subscription = _Subscription(queue, asyncio.get_running_loop())
        with self._lock:
            self._subscribers.setdefault(channel, []).append(subscription)
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        with self._lock:
            subs = self._subscribers.get(channel, [])
            self._subscribers[channel] = [s for s in subs if s.queue is not queue]

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._subscribers.get(channel, []))

    def publish(self, channel: str, payload: dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(channel, []))

        try:
            current_loop = asyncio.get_running_loop()
        except RuntimeError:
            current_loop = None

        for subscription in subscribers:
            if subscription.loop is current_loop:
                subscription.offer(payload)
            elif not subscription.loop.is_closed():
                # asyncio.Queue is not thread-safe
                subscription.loop.call_soon_threadsafe(subscription.offer, payload)

        logger.debug("Broadcast on %s to %d subscribers", channel, len(subscribers))
