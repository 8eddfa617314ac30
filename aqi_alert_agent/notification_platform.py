"""Platform scheduling primitive and an in-process implementation."""

import heapq
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from .models import NotificationPayload
from .scheduler import next_fire_time

logger = logging.getLogger(__name__)


class NotificationPlatform(ABC):
    """Local notification scheduling as offered by the host platform."""

    @abstractmethod
    def request_permission(self) -> bool:
        """Return True if notifications may be scheduled."""
        pass

    @abstractmethod
    def schedule_daily(self, hour: int, minute: int, payload: NotificationPayload) -> str:
        """Register a notification repeating every day at hour:minute. Returns its handle."""
        pass

    @abstractmethod
    def schedule_once(self, payload: NotificationPayload, fire_at: Optional[datetime] = None) -> str:
        """Register a one-off notification (immediate when fire_at is None). Returns its handle."""
        pass

    @abstractmethod
    def cancel(self, handle: str) -> None:
        """Cancel a scheduled notification. Unknown handles are ignored."""
        pass

    @abstractmethod
    def list_scheduled(self) -> List[str]:
        """Handles of all currently scheduled notifications."""
        pass


def log_delivery(payload: NotificationPayload) -> None:
    logger.info(f"Notification: {payload.title} - {payload.body}")


@dataclass
class _Job:
    handle: str
    payload: NotificationPayload
    fire_at: datetime
    hour: Optional[int] = None     # set for daily jobs
    minute: Optional[int] = None

    @property
    def recurring(self) -> bool:
        return self.hour is not None


class LocalNotificationPlatform(NotificationPlatform):
    """
    In-process notification platform.

    Jobs sit in a heap ordered by fire time; run_pending() hands due payloads
    to the delivery callable and re-arms daily jobs for the next day.
    """

    def __init__(
        self,
        deliver: Callable[[NotificationPayload], None] = log_delivery,
        permission_granted: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.deliver = deliver
        self.permission_granted = permission_granted
        self.clock = clock
        self._jobs: Dict[str, _Job] = {}
        self._heap: List[Tuple[datetime, str]] = []
        self._lock = threading.Lock()

    def request_permission(self) -> bool:
        return self.permission_granted

    def _add(self, job: _Job) -> str:
        with self._lock:
            self._jobs[job.handle] = job
            heapq.heappush(self._heap, (job.fire_at, job.handle))
        return job.handle

    def schedule_daily(self, hour: int, minute: int, payload: NotificationPayload) -> str:
        job = _Job(
            handle=uuid.uuid4().hex,
            payload=payload,
            fire_at=next_fire_time(hour, minute, self.clock()),
            hour=hour,
            minute=minute,
        )
        return self._add(job)

    def schedule_once(self, payload: NotificationPayload, fire_at: Optional[datetime] = None) -> str:
        job = _Job(handle=uuid.uuid4().hex, payload=payload, fire_at=fire_at or self.clock())
        return self._add(job)

    def cancel(self, handle: str) -> None:
        with self._lock:
            self._jobs.pop(handle, None)

    def list_scheduled(self) -> List[str]:
        with self._lock:
            return list(self._jobs)

    def payload_for(self, handle: str) -> Optional[NotificationPayload]:
        with self._lock:
            job = self._jobs.get(handle)
        return job.payload if job else None

    def run_pending(self, now: Optional[datetime] = None) -> int:
        """
        Deliver every notification due at or before now.

        Returns:
            Number of notifications delivered.
        """
        now = now or self.clock()
        due: List[_Job] = []
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                fire_at, handle = heapq.heappop(self._heap)
                job = self._jobs.get(handle)
                if job is None or job.fire_at != fire_at:
                    continue  # cancelled
                if job.recurring:
                    job.fire_at = next_fire_time(job.hour, job.minute, now)
                    heapq.heappush(self._heap, (job.fire_at, handle))
                else:
                    del self._jobs[handle]
                due.append(job)

        delivered = 0
        for job in due:
            try:
                self.deliver(job.payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Failed to deliver notification {job.handle}: {e}", exc_info=True)
        return delivered
