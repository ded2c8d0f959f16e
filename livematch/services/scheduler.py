"""
Timer scheduling for the Live Match Sync application.

All periodic work (clock ticks, alarm repeats, queue drains, fallback polls)
and all stream callbacks run through a ``Scheduler``. Callbacks never run
concurrently, which keeps every component single-threaded from its own point
of view. Timers and subscriptions owned by one live session are collected in a
``CancelScope`` so teardown is a single ``cancel()`` call.
"""
import heapq
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Protocol

from ..utils import now_ts

logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    """Anything that can be torn down by a cancel scope."""

    def cancel(self) -> None:
        ...


class TimerHandle:
    """A scheduled one-shot or repeating callback."""

    def __init__(self, callback: Callable[[], None], delay: float,
                 repeat: bool, due: float):
        self.callback = callback
        self.interval = max(0.0, float(delay))
        self.repeat = repeat
        self.due = due
        self.cancelled = False
        self.done = False
        self._timer: Optional[threading.Timer] = None

    @property
    def active(self) -> bool:
        return not self.cancelled and not self.done

    def cancel(self) -> None:
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class Scheduler(ABC):
    """Abstract timer loop - supports DIP for every time-driven component."""

    @abstractmethod
    def now(self) -> float:
        """Current time of this scheduler (epoch seconds)."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""

    @abstractmethod
    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` every ``interval`` seconds until cancelled."""

    @abstractmethod
    def dispatch(self, callback: Callable, *args):
        """
        Run ``callback(*args)`` on the loop, serialized with every other callback.

        Returns the callback's result, or None when it raised.
        """

    def _run(self, callback: Callable, *args):
        try:
            return callback(*args)
        except Exception:
            logger.exception("Scheduled callback %r failed", callback)
            return None


class ManualScheduler(Scheduler):
    """
    Deterministic scheduler driven by an explicit virtual clock.

    ``dispatch`` runs immediately; timers fire only from ``advance``.
    """

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._queue: List[tuple] = []
        self._handles: List[TimerHandle] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self._schedule(callback, delay, repeat=False)

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        return self._schedule(callback, interval, repeat=True)

    def dispatch(self, callback: Callable, *args):
        return self._run(callback, *args)

    @property
    def active_handles(self) -> int:
        """Number of scheduled timers that may still fire."""
        return sum(1 for handle in self._handles if handle.active)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that falls due on the way."""
        target = self._now + max(0.0, float(seconds))
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            if not handle.active:
                continue
            self._now = due
            self._run(handle.callback)
            if handle.repeat and not handle.cancelled:
                handle.due = due + max(handle.interval, 1e-6)
                heapq.heappush(self._queue, (handle.due, next(self._seq), handle))
            else:
                handle.done = True
        self._now = target
        self._handles = [handle for handle in self._handles if handle.active]

    def _schedule(self, callback: Callable[[], None], delay: float,
                  repeat: bool) -> TimerHandle:
        handle = TimerHandle(callback, delay, repeat, self._now + max(0.0, float(delay)))
        heapq.heappush(self._queue, (handle.due, next(self._seq), handle))
        self._handles.append(handle)
        return handle


class ThreadingScheduler(Scheduler):
    """
    Production scheduler backed by ``threading.Timer``.

    A single re-entrant lock serializes every callback, so components see
    the same one-at-a-time execution as with ``ManualScheduler``.
    """

    def __init__(self):
        self._lock = threading.RLock()

    def now(self) -> float:
        return now_ts()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(callback, delay, repeat=False, due=self.now() + max(0.0, delay))
        self._arm(handle)
        return handle

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(callback, interval, repeat=True, due=self.now() + max(0.0, interval))
        self._arm(handle)
        return handle

    def dispatch(self, callback: Callable, *args):
        with self._lock:
            return self._run(callback, *args)

    def _arm(self, handle: TimerHandle) -> None:
        timer = threading.Timer(handle.interval, self._fire, args=(handle,))
        timer.daemon = True
        handle._timer = timer
        timer.start()

    def _fire(self, handle: TimerHandle) -> None:
        with self._lock:
            if handle.cancelled:
                return
            self._run(handle.callback)
            if handle.repeat and not handle.cancelled:
                handle.due = self.now() + handle.interval
                self._arm(handle)
            else:
                handle.done = True


class CancelScope:
    """
    Cancellation token shared by every timer and subscription of one session.

    Once cancelled, the scope refuses new work: timers requested afterwards are
    returned already cancelled.
    """

    def __init__(self, scheduler: Scheduler):
        self.scheduler = scheduler
        self.cancelled = False
        self._handles: List[TimerHandle] = []
        self._resources: List[Cancellable] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        if self.cancelled:
            return self._dead(callback, delay, repeat=False)
        handle = self.scheduler.call_later(delay, callback)
        self._handles.append(handle)
        return handle

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        if self.cancelled:
            return self._dead(callback, interval, repeat=True)
        handle = self.scheduler.call_every(interval, callback)
        self._handles.append(handle)
        return handle

    def track(self, resource: Cancellable) -> Cancellable:
        """Tie a subscription (or any cancellable) to this scope."""
        if self.cancelled:
            resource.cancel()
        else:
            self._resources.append(resource)
        return resource

    @property
    def active_count(self) -> int:
        return sum(1 for handle in self._handles if handle.active)

    def cancel(self) -> None:
        self.cancelled = True
        for handle in self._handles:
            handle.cancel()
        for resource in self._resources:
            try:
                resource.cancel()
            except Exception:
                logger.debug("Ignoring failure while cancelling %r", resource, exc_info=True)
        self._handles.clear()
        self._resources.clear()

    def _dead(self, callback: Callable[[], None], delay: float, repeat: bool) -> TimerHandle:
        handle = TimerHandle(callback, delay, repeat, self.scheduler.now() + delay)
        handle.cancel()
        return handle
