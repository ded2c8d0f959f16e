"""
Server-sent event subscription for the Live Match Sync application.

A subscription reads one ``text/event-stream`` response on a daemon thread and
hands every callback to the scheduler, so listeners run serialized with the
rest of the session. Delivery is at-least-once: after a drop the reader waits
and reconnects until the subscription is cancelled, and the server replays an
``init`` snapshot on every (re)connect.
"""
import json
import logging
import threading
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Tuple

import requests

from ..utils.constants import (
    SSE_CONNECT_TIMEOUT_SECONDS, SSE_READ_TIMEOUT_SECONDS, SSE_RETRY_SECONDS,
)
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

DEFAULT_EVENT = "message"


def parse_event_stream(lines: Iterable[Any]) -> Iterator[Tuple[str, Any]]:
    """
    Turn the lines of an event stream into ``(event, payload)`` pairs.

    ``payload`` is the decoded JSON body, or an empty dict when the event has
    no data. Comment lines (keep-alive ``:`` lines) are skipped, and events with
    a body that is not valid JSON are dropped with a debug log.
    """
    event: Optional[str] = None
    data_lines = []

    for raw in lines:
        line = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        line = line.rstrip("\r\n")

        if not line:
            if event is None and not data_lines:
                continue
            name = event or DEFAULT_EVENT
            body = "\n".join(data_lines)
            event, data_lines = None, []
            if not body.strip():
                yield name, {}
                continue
            try:
                yield name, json.loads(body)
            except ValueError:
                logger.debug("Dropping %s event with malformed body %r", name, body)
            continue

        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)


class Subscription:
    """Handle of one stream subscription; ``cancel()`` stops it for good."""

    def __init__(self, url: str):
        self.url = url
        self._stop = threading.Event()
        self._response: Optional[requests.Response] = None
        self.thread: Optional[threading.Thread] = None

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def cancel(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        response = self._response
        if response is not None:
            response.close()
        logger.debug("Closed stream subscription %s", self.url)


class SseSubscriber:
    """Opens event-stream subscriptions with ``requests``."""

    def __init__(self, scheduler: Scheduler, *, headers: Optional[Dict[str, str]] = None,
                 retry_seconds: float = SSE_RETRY_SECONDS,
                 session: Optional[requests.Session] = None):
        self.scheduler = scheduler
        self.headers = dict(headers or {})
        self.retry_seconds = retry_seconds
        self.session = session or requests.Session()

    def subscribe(self, url: str, *,
                  on_open: Callable[[], None],
                  on_error: Callable[[Any], None],
                  on_event: Callable[[str, Any], None]) -> Subscription:
        """
        Start reading ``url`` in the background.

        Args:
            url: Stream endpoint
            on_open: Called after every successful (re)connect
            on_error: Called with the failure after every drop
            on_event: Called with ``(event, payload)`` for every message

        Returns:
            The subscription handle
        """
        subscription = Subscription(url)
        thread = threading.Thread(
            target=self._read_loop,
            args=(subscription, on_open, on_error, on_event),
            name="sse-reader",
            daemon=True,
        )
        subscription.thread = thread
        thread.start()
        return subscription

    def _read_loop(self, subscription: Subscription, on_open, on_error, on_event) -> None:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        headers.update(self.headers)

        while not subscription.cancelled:
            try:
                with self.session.get(
                    subscription.url,
                    headers=headers,
                    stream=True,
                    timeout=(SSE_CONNECT_TIMEOUT_SECONDS, SSE_READ_TIMEOUT_SECONDS),
                ) as response:
                    response.raise_for_status()
                    subscription._response = response
                    self._deliver(subscription, on_open)
                    for event, payload in parse_event_stream(
                            response.iter_lines(decode_unicode=True)):
                        if subscription.cancelled:
                            break
                        self._deliver(subscription, on_event, event, payload)
                if not subscription.cancelled:
                    self._deliver(subscription, on_error, "stream closed by server")
            except Exception as exc:
                # Closing the response from another thread surfaces here as well.
                if subscription.cancelled:
                    break
                logger.debug("Stream %s dropped: %s", subscription.url, exc)
                self._deliver(subscription, on_error, exc)
            finally:
                subscription._response = None

            subscription._stop.wait(self.retry_seconds)

    def _deliver(self, subscription: Subscription, callback: Callable, *args) -> None:
        self.scheduler.dispatch(self._invoke, subscription, callback, args)

    @staticmethod
    def _invoke(subscription: Subscription, callback: Callable, args: tuple) -> None:
        if not subscription.cancelled:
            callback(*args)
