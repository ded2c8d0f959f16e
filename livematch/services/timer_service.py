"""Match timer for the Live Match Sync application."""

import logging
import sys
from abc import ABC, abstractmethod
from typing import Callable, Optional, TextIO

from ..utils import DEFAULT_MATCH_DURATION_MIN, fmt_mmss, now_ts, elapsed_since
from ..utils.constants import ALARM_INTERVAL_SECONDS, TICK_INTERVAL_SECONDS
from .scheduler import CancelScope, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class AlarmSink(ABC):
    """Output of the overtime alarm."""

    @abstractmethod
    def beep(self) -> None:
        """Emit one alarm pulse."""


class TerminalBell(AlarmSink):
    """Rings the terminal bell."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout

    def beep(self) -> None:
        self.stream.write("\a")
        self.stream.flush()


class MatchTimer:
    """Service for the running clock of a live match and its overtime alarm."""

    def __init__(
        self,
        scheduler: Scheduler,
        snapshots=None,
        *,
        duration_minutes: int = DEFAULT_MATCH_DURATION_MIN,
        sink: Optional[AlarmSink] = None,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        alarm_interval: float = ALARM_INTERVAL_SECONDS,
        on_tick: Optional[Callable[[int], None]] = None,
    ):
        self.scheduler = scheduler
        self.snapshots = snapshots
        self.duration_seconds = max(1, int(duration_minutes)) * 60
        self.sink = sink or TerminalBell()
        self.tick_interval = tick_interval
        self.alarm_interval = alarm_interval
        self.on_tick = on_tick

        self.start_ts: Optional[float] = None
        self.elapsed_seconds = 0
        self.muted = snapshots.is_alarm_muted() if snapshots is not None else False

        self._scope: Optional[CancelScope] = None
        self._ticker: Optional[TimerHandle] = None
        self._alarm: Optional[TimerHandle] = None

    # ------------------------------------------------------------------
    # Core timer controls
    # ------------------------------------------------------------------
    def start(self, start_ts: Optional[float] = None,
              scope: Optional[CancelScope] = None) -> None:
        """Start the clock from ``start_ts`` (now when omitted).

        The anchor is kept, not the count: every tick recomputes elapsed
        time from it, so a restored session resumes at the right second.
        """

        self.stop()
        self.start_ts = now_ts() if start_ts is None else float(start_ts)
        self._scope = scope or CancelScope(self.scheduler)
        self._ticker = self._scope.call_every(self.tick_interval, self.tick)
        self.tick()

    def stop(self) -> None:
        """Cancel the clock tick and the alarm repeater."""

        for handle in (self._ticker, self._alarm):
            if handle is not None:
                handle.cancel()
        self._ticker = None
        self._alarm = None
        self._scope = None

    def tick(self) -> int:
        """Resynchronize the elapsed time with the anchor."""

        if self.start_ts is None:
            return 0
        self.elapsed_seconds = elapsed_since(self.start_ts, now_ts())
        if self.is_overtime() and not self.muted:
            self._start_alarm()
        if self.on_tick is not None:
            self.on_tick(self.elapsed_seconds)
        return self.elapsed_seconds

    # ------------------------------------------------------------------
    # Alarm controls
    # ------------------------------------------------------------------
    def set_muted(self, muted: bool) -> None:
        """Mute or unmute the alarm; the choice survives a reload."""

        self.muted = bool(muted)
        if self.snapshots is not None:
            self.snapshots.set_alarm_muted(self.muted)
        if self.muted:
            self._stop_alarm()
        elif self.running and self.is_overtime():
            self._start_alarm()

    def toggle_mute(self) -> bool:
        self.set_muted(not self.muted)
        return self.muted

    @property
    def alarm_active(self) -> bool:
        return self._alarm is not None and self._alarm.active

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._ticker is not None and self._ticker.active

    def remaining_seconds(self) -> int:
        return max(0, self.duration_seconds - self.elapsed_seconds)

    def is_overtime(self) -> bool:
        return self.start_ts is not None and self.elapsed_seconds >= self.duration_seconds

    def display(self) -> str:
        return fmt_mmss(self.elapsed_seconds)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _start_alarm(self) -> None:
        if self.alarm_active or self._scope is None:
            return
        logger.info("Match time is up, sounding the alarm")
        self._ring()
        self._alarm = self._scope.call_every(self.alarm_interval, self._ring)

    def _stop_alarm(self) -> None:
        if self._alarm is not None:
            self._alarm.cancel()
            self._alarm = None

    def _ring(self) -> None:
        try:
            self.sink.beep()
        except Exception:
            logger.debug("Alarm output failed", exc_info=True)
