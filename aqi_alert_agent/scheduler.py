"""Fire-time computation and the refresh job queue."""

import heapq
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Tuple


def next_fire_time(hour: int, minute: int, after: datetime) -> datetime:
    """
    Next wall-clock occurrence of hour:minute strictly after `after`.

    Args:
        hour: Hour of day (0-23).
        minute: Minute (0-59).
        after: Reference time (naive local).

    Returns:
        Today's occurrence if still ahead, otherwise tomorrow's.
    """
    candidate = after.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= after:
        candidate += timedelta(days=1)
    return candidate


class RefreshQueue:
    """
    Jobs keyed by (location_id, variant), ordered by when their content should
    be refreshed.

    Pushing a key again replaces its previous time; stale heap entries are
    skipped when popped.
    """

    def __init__(self):
        self._heap: List[Tuple[datetime, str, str]] = []
        self._due: Dict[Tuple[str, str], datetime] = {}
        self._lock = threading.Lock()

    def push(self, location_id: str, variant: str, refresh_at: datetime) -> None:
        with self._lock:
            self._due[(location_id, variant)] = refresh_at
            heapq.heappush(self._heap, (refresh_at, location_id, variant))

    def discard(self, location_id: str, variant: str) -> None:
        with self._lock:
            self._due.pop((location_id, variant), None)

    def get(self, location_id: str, variant: str):
        with self._lock:
            return self._due.get((location_id, variant))

    def pop_due(self, now: datetime) -> List[Tuple[str, str, datetime]]:
        """Remove and return every job due at or before now, earliest first."""
        due = []
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                refresh_at, location_id, variant = heapq.heappop(self._heap)
                if self._due.get((location_id, variant)) != refresh_at:
                    continue  # superseded or discarded
                del self._due[(location_id, variant)]
                due.append((location_id, variant, refresh_at))
        return due

    def __len__(self) -> int:
        with self._lock:
            return len(self._due)
