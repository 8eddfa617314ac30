"""Background refresh of scheduled alert content and cache sweeping."""

import logging
import threading
from datetime import date, datetime
from typing import Callable, List, Optional

from .scheduler import RefreshQueue

logger = logging.getLogger(__name__)


class BackgroundRefresher:
    """
    Re-derives notification content shortly before each scheduled fire time.

    Work comes from a RefreshQueue populated by the lifecycle manager, so a
    tick only touches jobs that are actually due. The cache is swept once per
    calendar day.
    """

    def __init__(
        self,
        manager,
        cache,
        queue: RefreshQueue,
        sweep_max_age_days: int = 2,
        clock: Callable[[], datetime] = datetime.now,
        tick_hooks: Optional[List[Callable[[datetime], None]]] = None,
    ):
        self.manager = manager
        self.cache = cache
        self.queue = queue
        self.sweep_max_age_days = sweep_max_age_days
        self.clock = clock
        self.tick_hooks = list(tick_hooks or [])
        self._last_sweep: Optional[date] = None

    def sync(self) -> int:
        """Queue a refresh for every stored recurring schedule. Returns the count."""
        queued = 0
        for record in self.manager.records():
            if record.recurring:
                self.manager.enqueue_refresh(record)
                queued += 1
        logger.info(f"Queued {queued} alert refresh jobs")
        return queued

    def tick(self, now: Optional[datetime] = None) -> int:
        """
        Run due refresh jobs and the daily sweep.

        Returns:
            Number of refresh jobs processed.
        """
        now = now or self.clock()
        processed = 0
        for location_id, variant, refresh_at in self.queue.pop_due(now):
            try:
                self.manager.refresh(location_id, variant)
            except Exception as e:
                logger.error(f"Refresh of {variant} alert for location {location_id} failed: {e}", exc_info=True)
            processed += 1

        if self._last_sweep != now.date():
            self.cache.sweep(self.sweep_max_age_days)
            self._last_sweep = now.date()

        for hook in self.tick_hooks:
            try:
                hook(now)
            except Exception as e:
                logger.error(f"Background hook failed: {e}", exc_info=True)
        return processed

    def run_forever(self, interval_seconds: float = 60.0, stop_event: Optional[threading.Event] = None) -> None:
        """Tick every interval_seconds until stop_event is set."""
        stop_event = stop_event or threading.Event()
        logger.info(f"Background refresher started (interval {interval_seconds}s)")
        while not stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Background tick failed: {e}", exc_info=True)
            stop_event.wait(interval_seconds)
        logger.info("Background refresher stopped")
