"""
Server-sent event fan-out for the authoritative server.

Each connected client gets its own queue. Publishing never blocks: a message
is put on every subscriber queue of the channel, and a subscriber that waited
``ping_interval`` seconds without news receives a ``ping`` keep-alive instead.
"""
import json
import logging
import queue
import threading
from typing import Callable, Dict, Hashable, Iterable, Iterator, List, Optional, Tuple

from ..utils import now_ms
from ..utils.constants import SERVER_PING_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

LIVE_CHANNEL = "live"


def format_event(event: str, data) -> str:
    """Encode one named event in the ``text/event-stream`` format."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


class StreamBroker:
    """Registry of stream subscribers keyed by channel (match id or ``live``)."""

    def __init__(self, ping_interval: float = SERVER_PING_INTERVAL_SECONDS):
        self.ping_interval = ping_interval
        self._lock = threading.Lock()
        self._subscribers: Dict[Hashable, List[queue.Queue]] = {}

    def subscribe(self, channel: Hashable) -> queue.Queue:
        subscriber: queue.Queue = queue.Queue()
        with self._lock:
            self._subscribers.setdefault(channel, []).append(subscriber)
        logger.debug("Stream subscriber joined %s", channel)
        return subscriber

    def unsubscribe(self, channel: Hashable, subscriber: queue.Queue) -> None:
        with self._lock:
            subscribers = self._subscribers.get(channel, [])
            if subscriber in subscribers:
                subscribers.remove(subscriber)
            if not subscribers:
                self._subscribers.pop(channel, None)
        logger.debug("Stream subscriber left %s", channel)

    def subscriber_count(self, channel: Hashable) -> int:
        with self._lock:
            return len(self._subscribers.get(channel, []))

    def publish(self, channel: Hashable, event: str, data) -> int:
        """Queue ``event`` for every subscriber of ``channel``; returns how many."""
        with self._lock:
            subscribers = list(self._subscribers.get(channel, []))
        for subscriber in subscribers:
            subscriber.put((event, data))
        return len(subscribers)

    def stream(self, channel: Hashable,
               initial: Optional[Callable[[], Iterable[Tuple[str, dict]]]] = None) -> Iterator[str]:
        """
        Yield the encoded events of ``channel`` until the client goes away.

        ``initial`` builds the events sent first (the ``init`` snapshot). It is
        called only once the subscription is registered, so anything published
        while the snapshot is taken is queued behind it instead of lost.
        """
        subscriber = self.subscribe(channel)
        try:
            for event, data in (initial() if initial is not None else ()):
                yield format_event(event, data)
            while True:
                try:
                    event, data = subscriber.get(timeout=self.ping_interval)
                except queue.Empty:
                    event, data = "ping", {"ts": now_ms()}
                yield format_event(event, data)
        finally:
            self.unsubscribe(channel, subscriber)
