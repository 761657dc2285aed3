"""Bounded in-memory history of metric snapshots."""

from collections import deque
from typing import Optional

from zenith.models.metrics import AggregatedMetrics


class MetricsHistory:
    """
    Capped FIFO of snapshots, oldest evicted first.

    Snapshots are appended in tick order, so insertion order is timestamp
    order.
    """

    def __init__(self, max_size: int = 100):
        if max_size < 1:
            raise ValueError("History size must be at least 1")
        self.max_size = max_size
        self._entries: deque[AggregatedMetrics] = deque(maxlen=max_size)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, snapshot: AggregatedMetrics) -> None:
        self._entries.append(snapshot)

    def latest(self) -> Optional[AggregatedMetrics]:
        return self._entries[-1] if self._entries else None

    def recent(self, count: int = 10) -> list[AggregatedMetrics]:
        """Up to ``count`` most recent snapshots, oldest to newest."""
        if count <= 0:
            return []
        return list(self._entries)[-count:]
