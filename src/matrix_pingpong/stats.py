"""A thread-safe rolling statistics store for one propagation direction."""

import threading
from collections import deque
from typing import NamedTuple

import numpy as np

from .latency import LatencyRecord

HISTORY_CAPACITY = 500


class WindowSnapshot(NamedTuple):
    """Consistent view of a :class:`LatencyWindow` taken under its lock."""

    history: tuple[LatencyRecord, ...]
    count: int
    last: LatencyRecord | None
    mean: LatencyRecord | None


class LatencyWindow:
    """Capped latency history plus an uncapped running sum and count.

    The history feeds the bar chart and keeps only the most recent records
    (oldest evicted first). The running sum and count feed the displayed
    average and cover every record ever pushed; they are never decremented on
    eviction, so the average is the all-time mean rather than the mean of the
    visible history.

    The store is written by the aggregator thread and read by the renderer, so
    every access goes through ``lock``.

    Attributes:
        history (collections.deque): Recent records, most recent last.
        capacity (int): Maximum length of the history.
        lock (threading.Lock): Lock guarding all state.
        count (int): Number of records ever pushed.
    """

    def __init__(self, capacity: int = HISTORY_CAPACITY) -> None:
        """Initialize an empty window.

        Args:
            capacity (int): The maximum number of records kept for the history.
        """
        self.history: deque[LatencyRecord] = deque(maxlen=capacity)
        self.capacity = capacity
        self.lock = threading.Lock()
        self.count = 0
        self._sum = np.zeros(4, dtype=np.int64)

    def update(self, record: LatencyRecord) -> None:
        """Append a record to the history and add it to the running sums.

        Args:
            record (LatencyRecord): The record to add.
        """
        with self.lock:
            self.history.append(record)
            self._sum += record.as_array()
            self.count += 1

    def last_value(self) -> LatencyRecord | None:
        with self.lock:
            return self.history[-1] if self.history else None

    def mean_value(self) -> LatencyRecord | None:
        """Return the element-wise all-time mean, or ``None`` if empty.

        Nanosecond sums are divided with integer floor division.
        """
        with self.lock:
            return self._mean_locked()

    def history_snapshot(self) -> tuple[LatencyRecord, ...]:
        with self.lock:
            return tuple(self.history)

    def snapshot(self) -> WindowSnapshot:
        """Return history, count, last and mean values in one locked read."""
        with self.lock:
            return WindowSnapshot(
                history=tuple(self.history),
                count=self.count,
                last=self.history[-1] if self.history else None,
                mean=self._mean_locked(),
            )

    def _mean_locked(self) -> LatencyRecord | None:
        if self.count == 0:
            return None
        return LatencyRecord.from_array(self._sum // self.count)


__all__ = ["HISTORY_CAPACITY", "LatencyWindow", "WindowSnapshot"]
