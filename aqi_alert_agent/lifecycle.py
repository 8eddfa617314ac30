"""
Lifecycle of scheduled alert notifications.

Each (location, variant) pair has at most one active schedule. Content is
resolved (cache first, generator on a miss) before the platform trigger is
registered, because the platform is handed a static body. Changing a schedule
is always cancel-then-create.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from .models import (
    CUSTOM,
    EVENING,
    MORNING,
    EnvironmentalSnapshot,
    NotificationPayload,
    ScheduleRecord,
    parse_time_of_day,
    variant_kind,
)
from .preferences import AlertPreferences, VariantSchedule
from .scheduler import next_fire_time
from .snapshot_provider import LocationNotFoundError, fetch_snapshot_or_fallback

logger = logging.getLogger(__name__)

TITLE_ICONS = {
    MORNING: "\U0001F305",
    EVENING: "\U0001F319",
    CUSTOM: "\U0001F514",
}


class ScheduleState:
    """Observable state of a (location, variant) pair."""
    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"


class KeyedLocks:
    """One lock per key, created on first use."""

    def __init__(self):
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: Tuple[str, str]):
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


def build_payload(
    location_id: str,
    variant: str,
    display_name: str,
    body: str,
    location_name: Optional[str] = None,
) -> NotificationPayload:
    kind = variant_kind(variant)
    title = f"{TITLE_ICONS[kind]} {display_name}"
    if location_name:
        title = f"{title} - {location_name}"
    return NotificationPayload(
        title=title,
        body=body,
        data={
            "type": f"{kind}-report",
            "location_id": location_id,
            "variant": variant,
            "scheduled": True,
        },
    )


class NotificationLifecycleManager:
    """Schedules, refreshes and cancels per-location alert notifications."""

    def __init__(
        self,
        platform,
        snapshot_provider,
        cache,
        generator,
        schedule_store,
        refresh_queue=None,
        refresh_lead: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.platform = platform
        self.snapshot_provider = snapshot_provider
        self.cache = cache
        self.generator = generator
        self.store = schedule_store
        self.refresh_queue = refresh_queue
        self.refresh_lead = refresh_lead
        self.clock = clock
        self._locks = KeyedLocks()
        self._listeners: List[Callable[[str, dict], None]] = []

    # Content resolution

    def _resolve_content(
        self, location_id: str, variant: str, display_name: str
    ) -> Optional[Tuple[str, EnvironmentalSnapshot]]:
        """Return (body, snapshot), or None if the location cannot be resolved."""
        try:
            snapshot = fetch_snapshot_or_fallback(self.snapshot_provider, location_id)
        except LocationNotFoundError as e:
            logger.warning(f"Cannot resolve location {location_id} for {variant} alert: {e}")
            return None

        cached = self.cache.lookup(snapshot, location_id, variant)
        if cached:
            logger.info(f"Using cached {variant} alert for location {location_id}")
            return cached, snapshot

        logger.info(f"Generating new \"{display_name}\" alert for location {location_id}")
        message = self.generator.generate(snapshot, variant, display_name)
        if message and not self.generator.is_fallback(message, variant):
            self.cache.insert(self.cache.key_for(snapshot, location_id, variant), message)
        return message, snapshot

    # Registration

    def enqueue_refresh(self, record: ScheduleRecord) -> None:
        if self.refresh_queue is None or not record.recurring:
            return
        now = self.clock()
        refresh_at = next_fire_time(record.hour, record.minute, now) - self.refresh_lead
        if refresh_at <= now:
            refresh_at += timedelta(days=1)
        self.refresh_queue.push(record.location_id, record.variant, refresh_at)

    def _withdraw(self, handle: str) -> None:
        """Cancel a handle that no record tracks, logging any failure."""
        try:
            self.platform.cancel(handle)
        except Exception as e:
            logger.error(f"Failed to withdraw untracked notification {handle}: {e}", exc_info=True)

    def _register_locked(
        self,
        location_id: str,
        variant: str,
        display_name: str,
        hour: int,
        minute: int,
        recurring: bool,
        body: str,
        location_name: Optional[str],
    ) -> Optional[str]:
        payload = build_payload(location_id, variant, display_name, body, location_name)
        try:
            if recurring:
                handle = self.platform.schedule_daily(hour, minute, payload)
            else:
                handle = self.platform.schedule_once(
                    payload, fire_at=next_fire_time(hour, minute, self.clock())
                )
        except Exception as e:
            logger.error(f"Failed to schedule {variant} alert for location {location_id}: {e}", exc_info=True)
            return None

        record = ScheduleRecord(
            location_id=location_id,
            variant=variant,
            display_name=display_name,
            hour=hour,
            minute=minute,
            recurring=recurring,
            handle=handle,
            body=body,
            created_at=self.clock(),
        )
        try:
            self.store.save(record)
        except Exception as e:
            # An untracked handle could never be cancelled
            logger.error(f"Failed to persist {variant} schedule for location {location_id}: {e}")
            self._withdraw(handle)
            return None

        self.enqueue_refresh(record)
        logger.info(
            f"Scheduled {variant} alert for location {location_id} at {record.time_of_day} "
            f"({'daily' if recurring else 'once'}), handle {handle}"
        )
        return handle

    def _cancel_locked(self, location_id: str, variant: str) -> bool:
        if self.refresh_queue is not None:
            self.refresh_queue.discard(location_id, variant)
        record = self.store.get(location_id, variant)
        if record is None:
            return False
        try:
            self.platform.cancel(record.handle)
        except Exception as e:
            if record.handle in self.platform.list_scheduled():
                logger.error(f"Failed to cancel notification {record.handle}: {e}")
                raise
            logger.warning(f"Cancel of notification {record.handle} failed but it is no longer scheduled: {e}")
        self.store.delete(location_id, variant)
        logger.info(f"Cancelled {variant} alert for location {location_id} (handle {record.handle})")
        return True

    # Public operations

    def schedule(
        self,
        location_id: str,
        variant: str,
        display_name: str,
        time_of_day: str,
        recurring: bool = True,
    ) -> Optional[str]:
        """
        Resolve content and register a notification for (location_id, variant).

        Any existing schedule for the pair is cancelled first.

        Args:
            location_id: Location the alert describes.
            variant: "morning", "evening" or "custom:<id>".
            display_name: Alert name shown in the title and prompt.
            time_of_day: "HH:MM" local time.
            recurring: Daily when True, otherwise a single notification.

        Returns:
            The platform handle, or None when permission is denied, the
            location cannot be resolved or the platform refuses. Nothing is
            registered in that case.

        Raises:
            ValueError: If time_of_day is malformed.
        """
        hour, minute = parse_time_of_day(time_of_day)
        with self._locks.hold((location_id, variant)):
            self._cancel_locked(location_id, variant)

            if not self.platform.request_permission():
                logger.warning(f"Notification permission denied; {variant} alert for {location_id} not scheduled")
                return None

            resolved = self._resolve_content(location_id, variant, display_name)
            if resolved is None:
                return None
            body, snapshot = resolved
            if not body:
                logger.error(f"No content for {variant} alert at location {location_id}; not scheduling")
                return None

            return self._register_locked(
                location_id, variant, display_name, hour, minute, recurring, body, snapshot.location_name
            )

    def cancel(self, location_id: str, variant: str) -> bool:
        """
        Cancel the schedule for (location_id, variant).

        Returns:
            True if a schedule was cancelled, False if none existed.
        """
        with self._locks.hold((location_id, variant)):
            return self._cancel_locked(location_id, variant)

    def reconcile(
        self,
        location_id: str,
        preferences: Union[AlertPreferences, Iterable[VariantSchedule]],
    ) -> Dict[str, Optional[str]]:
        """
        Make the location's schedules match its preferences.

        Cancels every schedule for the location, then schedules exactly the
        enabled variants. Safe to replay.

        Returns:
            Mapping of each enabled variant to its new handle (None on failure).
        """
        if isinstance(preferences, AlertPreferences):
            wanted = preferences.enabled_variants()
        else:
            wanted = list(preferences)

        blocked = set()
        for record in self.store.list(location_id):
            try:
                self.cancel(location_id, record.variant)
            except Exception as e:
                logger.error(f"Could not cancel {record.variant} for location {location_id}: {e}")
                blocked.add(record.variant)

        results: Dict[str, Optional[str]] = {}
        for item in wanted:
            if item.variant in blocked:
                results[item.variant] = None
                continue
            try:
                results[item.variant] = self.schedule(
                    location_id, item.variant, item.display_name, item.time_of_day, item.recurring
                )
            except ValueError as e:
                logger.error(f"Skipping {item.variant} alert for location {location_id}: {e}")
                results[item.variant] = None
            except Exception as e:
                logger.error(f"Failed to schedule {item.variant} for location {location_id}: {e}", exc_info=True)
                results[item.variant] = None

        logger.info(
            f"Reconciled notifications for location {location_id}: "
            f"{sum(1 for h in results.values() if h)} of {len(wanted)} scheduled"
        )
        return results

    def refresh(self, location_id: str, variant: str) -> Optional[str]:
        """
        Re-resolve content for an existing schedule and re-register it.

        The replacement trigger is registered before the old one is cancelled.
        If content cannot be resolved or the replacement cannot be registered,
        the current schedule is kept and its next refresh is queued.

        Returns:
            The active handle after the refresh, or None if nothing is scheduled.
        """
        with self._locks.hold((location_id, variant)):
            record = self.store.get(location_id, variant)
            if record is None:
                return None
            resolved = self._resolve_content(location_id, variant, record.display_name)
            if resolved is None or not resolved[0]:
                logger.warning(f"Keeping existing {variant} alert for location {location_id}")
                self.enqueue_refresh(record)
                return record.handle
            body, snapshot = resolved

            # The replacement is registered before the old trigger is withdrawn
            handle = self._register_locked(
                location_id,
                variant,
                record.display_name,
                record.hour,
                record.minute,
                record.recurring,
                body,
                snapshot.location_name,
            )
            if handle is None:
                logger.warning(f"Refresh failed; keeping existing {variant} alert for location {location_id}")
                self.enqueue_refresh(record)
                return record.handle

            try:
                self.platform.cancel(record.handle)
            except Exception as e:
                if record.handle not in self.platform.list_scheduled():
                    logger.warning(f"Cancel of notification {record.handle} failed but it is no longer scheduled: {e}")
                    return handle
                logger.error(f"Could not replace notification {record.handle}, keeping it: {e}")
                self._withdraw(handle)
                self.store.save(record)
                self.enqueue_refresh(record)
                return record.handle
            return handle

    def handle_delivery(self, notification: Union[NotificationPayload, dict]) -> Optional[str]:
        """
        React to a delivered notification. Content is never regenerated here.

        A delivered one-off notification's record is dropped. Listeners are
        called with (location_id, data).

        Returns:
            The location id the notification refers to, for navigation.
        """
        data = notification.data if isinstance(notification, NotificationPayload) else dict(notification or {})
        location_id = data.get("location_id")
        if not location_id:
            return None

        variant = data.get("variant")
        if variant:
            with self._locks.hold((location_id, variant)):
                record = self.store.get(location_id, variant)
                if record is not None and not record.recurring:
                    self.store.delete(location_id, variant)

        for listener in list(self._listeners):
            try:
                listener(location_id, data)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}", exc_info=True)
        return location_id

    def add_delivery_listener(self, callback: Callable[[str, dict], None]) -> None:
        self._listeners.append(callback)

    def records(self, location_id: Optional[str] = None) -> List[ScheduleRecord]:
        return self.store.list(location_id)

    def state(self, location_id: str, variant: str) -> str:
        if self.store.get(location_id, variant) is None:
            return ScheduleState.UNSCHEDULED
        return ScheduleState.SCHEDULED
