"""Network connectivity signal for observing clients."""
import logging
from typing import Callable, List

logger = logging.getLogger(__name__)


class _Listener:
    def __init__(self, monitor: "ConnectivityMonitor", callback: Callable[[], None]):
        self.monitor = monitor
        self.callback = callback

    def cancel(self) -> None:
        self.monitor.remove_listener(self.callback)


class ConnectivityMonitor:
    """
    Tracks whether the network is reachable and announces restorations.

    Listeners fire only on the offline to online transition, which is the
    trigger for draining queued writes.
    """

    def __init__(self, online: bool = True):
        self._online = bool(online)
        self._listeners: List[Callable[[], None]] = []

    @property
    def online(self) -> bool:
        return self._online

    def add_listener(self, callback: Callable[[], None]) -> _Listener:
        """Register ``callback`` for restorations; the handle's ``cancel()`` removes it."""
        self._listeners.append(callback)
        return _Listener(self, callback)

    def remove_listener(self, callback: Callable[[], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def set_online(self, online: bool) -> None:
        was_online, self._online = self._online, bool(online)
        if was_online == self._online:
            return
        logger.info("Network is %s", "online" if self._online else "offline")
        if self._online:
            for callback in list(self._listeners):
                callback()

    def probe(self, api) -> bool:
        """Update the signal from the server's health endpoint."""
        self.set_online(api.health())
        return self._online
