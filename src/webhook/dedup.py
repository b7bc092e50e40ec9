"""Processed-event tracking for webhook deduplication.

Lark redelivers an event when it does not get a timely acknowledgement, so
every ``event_id`` is recorded before the event is processed. Entries older
than the retention window are pruned on access.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod


class EventStore(ABC):
    """Set of event ids already handled."""

    @abstractmethod
    def has_seen(self, event_id: str) -> bool: ...

    @abstractmethod
    def mark_seen(self, event_id: str) -> None: ...

    @abstractmethod
    def check_and_mark(self, event_id: str) -> bool:
        """Atomically record ``event_id``; return True if it was new."""


class InMemoryEventStore(EventStore):
    """Process-local store with a time-windowed eviction.

    Default window: 24 hours.
    """

    def __init__(self, window_seconds: int = 86400) -> None:
        self._window_seconds = window_seconds
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()

    def has_seen(self, event_id: str) -> bool:
        with self._lock:
            self._prune(time.time())
            return event_id in self._seen

    def mark_seen(self, event_id: str) -> None:
        with self._lock:
            now = time.time()
            self._prune(now)
            self._seen.setdefault(event_id, now)

    def check_and_mark(self, event_id: str) -> bool:
        with self._lock:
            now = time.time()
            self._prune(now)
            if event_id in self._seen:
                return False
            self._seen[event_id] = now
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def _prune(self, now: float) -> None:
        cutoff = now - self._window_seconds
        # Insertion order equals first-seen order, so stop at the first fresh entry
        expired: list[str] = []
        for event_id, seen_at in self._seen.items():
            if seen_at > cutoff:
                break
            expired.append(event_id)
        for event_id in expired:
            del self._seen[event_id]
