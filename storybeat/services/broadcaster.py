"""
Generation event broadcaster.

Per-beat subscriber queues for SSE clients. The orchestrator publishes each
GenerationEvent once; every subscriber of that beat gets a copy. A None
sentinel ends a subscriber's stream.
"""

from __future__ import annotations

import asyncio
import logging

from storybeat.protocol.events import GenerationEvent

logger = logging.getLogger(__name__)

QUEUE_SIZE = 1024


def _put_evicting(queue: asyncio.Queue[GenerationEvent | None], item: GenerationEvent | None) -> None:
    """Put an item, dropping the oldest queued event when the queue is full."""
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(item)


class GenerationBroadcaster:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue[GenerationEvent | None]]] = {}

    def publish(self, event: GenerationEvent) -> int:
        """Push an event to all subscribers of its beat; returns deliveries."""
        subscribers = self._subscribers.get(event.beat_id, [])
        delivered = 0
        for queue in list(subscribers):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                if not event.is_complete:
                    logger.warning(f"Event queue full for beat {event.beat_id}, dropping event")
                    continue
                # a lagging client still has to see the end of its stream
                logger.warning(f"Event queue full for beat {event.beat_id}, ending the stream early")
                _put_evicting(queue, event)
                self.unsubscribe(event.beat_id, queue)
                delivered += 1
        return delivered

    def subscribe(self, beat_id: str) -> asyncio.Queue[GenerationEvent | None]:
        queue: asyncio.Queue[GenerationEvent | None] = asyncio.Queue(maxsize=QUEUE_SIZE)
        self._subscribers.setdefault(beat_id, []).append(queue)
        logger.debug(f"New subscriber for beat {beat_id}")
        return queue

    def unsubscribe(self, beat_id: str, queue: asyncio.Queue[GenerationEvent | None]) -> None:
        subscribers = self._subscribers.get(beat_id, [])
        if queue in subscribers:
            subscribers.remove(queue)
        if not subscribers and beat_id in self._subscribers:
            del self._subscribers[beat_id]

    def close_stream(self, beat_id: str) -> None:
        """Send the end-of-stream sentinel and drop all subscribers of a beat."""
        for queue in self._subscribers.pop(beat_id, []):
            _put_evicting(queue, None)

    def clear(self) -> None:
        self._subscribers.clear()

    @property
    def active_streams(self) -> int:
        return sum(1 for subs in self._subscribers.values() if subs)
