"""
Offline goal queue for the Live Match Sync application.

Goals recorded while the server is unreachable are persisted under the
``matchGoalQueue`` key and replayed later in enqueue order. Every item keeps
the idempotency key it was given before its first send, so a replay of a goal
the server already stored is answered with the existing stat.
"""
import logging
from typing import Callable, List, Optional

from ..models import GoalPayload, QueuedSubmission
from ..utils.constants import KEY_GOAL_QUEUE
from .api_client import ApiError
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


class OfflineGoalQueue:
    """Persistent FIFO of goal submissions waiting for the server."""

    def __init__(self, store: KeyValueStore, api,
                 on_applied: Optional[Callable[[int], None]] = None):
        self.store = store
        self.api = api
        self.on_applied = on_applied

    def enqueue(self, match_id: int, payload: GoalPayload) -> QueuedSubmission:
        item = QueuedSubmission(match_id=int(match_id), payload=payload)
        items = self._read()
        items.append(item)
        self._write(items)
        logger.info("Queued goal for match %s (%d pending)", match_id, len(items))
        return item

    def pending(self, match_id: Optional[int] = None) -> List[QueuedSubmission]:
        items = self._read()
        if match_id is None:
            return items
        return [item for item in items if item.match_id == match_id]

    def drain(self, is_online: bool, match_id: Optional[int]) -> int:
        """
        Replay the queued goals of ``match_id`` in enqueue order.

        Args:
            is_online: Current connectivity; nothing is sent while offline
            match_id: The active match; items of other matches are left alone

        Returns:
            Number of goals the server accepted during this drain
        """
        if not is_online or match_id is None:
            return 0
        todo = self.pending(match_id)
        if not todo:
            return 0

        applied = 0
        removed = set()
        for item in todo:
            try:
                self.api.submit_goal(match_id, item.payload)
            except ApiError as exc:
                if exc.definitive:
                    logger.warning("Dropping queued goal %s for match %s: %s",
                                   item.idempotency_key, match_id, exc)
                    removed.add(item.idempotency_key)
                    continue
                logger.info("Queue drain for match %s stopped: %s", match_id, exc)
                break
            applied += 1
            removed.add(item.idempotency_key)

        if removed:
            self._write([item for item in self._read() if item.idempotency_key not in removed])
            logger.info("Drained %d queued goal(s) for match %s", len(removed), match_id)
            if self.on_applied is not None:
                self.on_applied(match_id)
        return applied

    def discard(self, match_id: int) -> int:
        """Drop every queued goal of ``match_id``; returns how many were dropped."""
        items = self._read()
        remaining = [item for item in items if item.match_id != match_id]
        if len(remaining) != len(items):
            self._write(remaining)
        return len(items) - len(remaining)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _read(self) -> List[QueuedSubmission]:
        raw = self.store.get_json(KEY_GOAL_QUEUE, default=[])
        if not isinstance(raw, list):
            logger.warning("Ignoring corrupted goal queue")
            return []
        items = []
        keyless = False
        for entry in raw:
            try:
                items.append(QueuedSubmission.from_json(entry))
            except (KeyError, TypeError, ValueError):
                logger.warning("Ignoring corrupted queued goal %r", entry)
                continue
            keyless = keyless or not entry["payload"].get("idempotency_key")
        if keyless:
            # Keys handed out on read must stay stable across reads
            self._write(items)
        return items

    def _write(self, items: List[QueuedSubmission]) -> None:
        if items:
            self.store.set_json(KEY_GOAL_QUEUE, [item.to_json() for item in items])
        else:
            self.store.remove(KEY_GOAL_QUEUE)
