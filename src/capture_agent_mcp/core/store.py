from __future__ import annotations
import threading
from collections import deque
from typing import Deque, List, Optional
from .models import AnomalyEvent


class AnomalyLog:
    """
    Session scoped, append only log of AnomalyEvent objects.

    Why a deque:
      It is fast for append
      It enforces a max size to avoid unbounded memory growth
      maxlen=None keeps every event, for logs owned by a single session.

    Important:
      Events are appended from the thread that finalizes buckets and read
      from MCP tool handlers, so every access holds the lock.
      Events themselves are frozen and are never mutated after append.
    """

    def __init__(self, maxlen: Optional[int] = 10_000):
        self._events: Deque[AnomalyEvent] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def append(self, event: AnomalyEvent) -> None:
        with self._lock:
            self._events.append(event)

    def all(self) -> List[AnomalyEvent]:
        with self._lock:
            return list(self._events)

    def recent(self, limit: int = 50, tag: Optional[str] = None) -> List[AnomalyEvent]:
        """
        Return the newest events, oldest first, optionally only those carrying tag.
        """
        with self._lock:
            events = list(self._events)
        if tag:
            events = [e for e in events if tag in e.tags]
        if limit > 0:
            events = events[-limit:]
        return events

    def tags(self) -> List[str]:
        """
        Distinct tags across the log, used to build category filters.
        """
        seen: List[str] = []
        for e in self.all():
            for t in e.tags:
                if t not in seen:
                    seen.append(t)
        return seen

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
