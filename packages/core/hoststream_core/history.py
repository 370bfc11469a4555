"""Latest-snapshot holder with a bounded FIFO history window."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable

from hoststream_telemetry.models import Snapshot


HISTORY_CAPACITY = 60

logger = logging.getLogger("hoststream.history")

Subscriber = Callable[[Snapshot], None]


class HistoryStore:
    """Single source of truth for the current snapshot and the recent window.

    ``update`` is the only mutation and is serialized by a lock. Readers get the
    last published tuple without locking.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._buffer: deque[Snapshot] = deque(maxlen=HISTORY_CAPACITY)
        self._current = Snapshot.empty()
        self._published: tuple[Snapshot, ...] = ()
        self._subscribers: list[Subscriber] = []

    def update(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._current = snapshot
            # Snapshots are frozen, so the buffered entry cannot be changed afterwards.
            self._buffer.append(snapshot)
            self._published = tuple(self._buffer)
            subscribers = list(self._subscribers)

            for callback in subscribers:
                try:
                    callback(snapshot)
                except Exception:
                    logger.exception("history subscriber failed", extra={"event": "subscriber_error"})

    def current(self) -> Snapshot:
        return self._current

    def history(self) -> tuple[Snapshot, ...]:
        return self._published

    def __len__(self) -> int:
        return len(self._published)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe
