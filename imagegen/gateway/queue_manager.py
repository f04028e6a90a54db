"""Queue Manager — per-backend FIFO queues of pending generation requests.

Only the gateway touches these queues: submit() enqueues, tick() pops and
expires. Dispatch order within one backend equals enqueue order; there is
no ordering across backends.
"""

from __future__ import annotations

import logging
from collections import deque

from imagegen.gateway.types import Backend, QueueEntry

logger = logging.getLogger(__name__)


class QueueManager:
    """Per-backend FIFO queues.

    Usage:
        qm = QueueManager()
        qm.enqueue(entry)

        for backend in qm.backends_with_work():
            entry = qm.pop(backend)
    """

    def __init__(self):
        self._queues: dict[Backend, deque[QueueEntry]] = {b: deque() for b in Backend}

    def enqueue(self, entry: QueueEntry) -> None:
        """Append an entry to its backend's queue."""
        backend = entry.request.backend
        self._queues[backend].append(entry)

        logger.debug(
            "Enqueued request %s for %s (depth=%d)",
            entry.request.request_id,
            backend.value,
            len(self._queues[backend]),
        )

    def pop(self, backend: Backend) -> QueueEntry | None:
        """Remove and return the oldest entry, or None if the queue is empty."""
        queue = self._queues[backend]
        if not queue:
            return None
        return queue.popleft()

    def peek(self, backend: Backend) -> QueueEntry | None:
        """Oldest entry without removing it."""
        queue = self._queues[backend]
        return queue[0] if queue else None

    def discard_abandoned(self, backend: Backend) -> int:
        """Drop entries at the head whose caller already gave up.

        Returns the number of entries dropped.
        """
        queue = self._queues[backend]
        dropped = 0
        while queue and queue[0].abandoned:
            entry = queue.popleft()
            dropped += 1
            logger.info("Dropped abandoned request %s for %s", entry.request.request_id, backend.value)
        return dropped

    def expire(self, backend: Backend, now: float, max_residency: float) -> list[QueueEntry]:
        """Remove and return entries that have waited longer than *max_residency* seconds.

        Entries are in enqueue order, so expired ones are always at the head.
        """
        queue = self._queues[backend]
        expired: list[QueueEntry] = []
        while queue and now - queue[0].enqueued_at > max_residency:
            expired.append(queue.popleft())
        return expired

    def backends_with_work(self) -> list[Backend]:
        """Backends whose queue is non-empty, in enum order."""
        return [b for b, q in self._queues.items() if q]

    def queue_size(self, backend: Backend) -> int:
        return len(self._queues[backend])

    def total_size(self) -> int:
        return sum(len(q) for q in self._queues.values())

    def drain(self) -> list[QueueEntry]:
        """Remove every entry from every queue (shutdown)."""
        entries: list[QueueEntry] = []
        for queue in self._queues.values():
            entries.extend(queue)
            queue.clear()
        return entries

    def get_stats(self) -> dict:
        return {
            "total": self.total_size(),
            "by_backend": {b.value: len(q) for b, q in self._queues.items()},
        }
