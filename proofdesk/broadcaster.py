# proofdesk/broadcaster.py
"""
Topic-based publish/subscribe for live dashboard updates.

Events are fire-and-forget. A subscriber only receives events published after
it subscribed; there is no backlog or replay.
"""
import asyncio
import threading
from typing import Any, Dict, List, Optional

from proofdesk import monitoring
from proofdesk.schemas import Submission

RECORD_EVENTS = "record-events"


class Subscription:
    def __init__(self, topic: str, maxsize: int = 100,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.topic = topic
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.loop = loop

    def _put(self, event: Dict[str, Any]):
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            monitoring.logger.warning("Dropping event for slow viewer", extra={"topic": self.topic})

    def deliver(self, event: Dict[str, Any]):
        # publish may run on a worker thread; hand off to the subscriber's loop
        if self.loop is not None and not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._put, event)
        else:
            self._put(event)

    async def get(self) -> Dict[str, Any]:
        return await self.queue.get()


class Broadcaster:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subs: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str = RECORD_EVENTS,
                  loop: Optional[asyncio.AbstractEventLoop] = None) -> Subscription:
        sub = Subscription(topic, maxsize=self.queue_size, loop=loop)
        with self._lock:
            self._subs.setdefault(topic, []).append(sub)
        return sub

    def unsubscribe(self, sub: Subscription):
        with self._lock:
            subs = self._subs.get(sub.topic, [])
            if sub in subs:
                subs.remove(sub)

    def subscriber_count(self, topic: str = RECORD_EVENTS) -> int:
        with self._lock:
            return len(self._subs.get(topic, []))

    def publish(self, topic: str, event: Dict[str, Any]) -> int:
        """Deliver to current subscribers; returns how many were reached."""
        with self._lock:
            subs = list(self._subs.get(topic, []))
        for sub in subs:
            sub.deliver(event)
        return len(subs)

    def broadcast_created(self, record: Submission) -> int:
        return self.publish(RECORD_EVENTS, {"type": "created", "record": record.model_dump(mode="json")})

    def broadcast_deleted(self, record_id: str) -> int:
        return self.publish(RECORD_EVENTS, {"type": "deleted", "id": record_id})
