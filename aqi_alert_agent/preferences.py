"""Alert preferences, typed partial updates and the service that applies them."""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, List, Optional

from .models import EVENING, MORNING, custom_variant, parse_time_of_day

logger = logging.getLogger(__name__)

DEFAULT_MORNING_TIME = "08:00"
DEFAULT_EVENING_TIME = "18:00"
MORNING_DISPLAY_NAME = "Morning Report"
EVENING_DISPLAY_NAME = "Evening Report"


@dataclass
class CustomAlert:
    """A user-defined alert with its own name and time."""
    id: str
    name: str
    time: str          # HH:MM, user local time
    enabled: bool = True

    @property
    def variant(self) -> str:
        return custom_variant(self.id)


@dataclass
class VariantSchedule:
    """One enabled alert variant as the lifecycle manager consumes it."""
    variant: str
    display_name: str
    time_of_day: str
    recurring: bool = True


@dataclass
class AlertPreferences:
    """Report settings for one location."""
    location_id: str
    morning_report_enabled: bool = False
    morning_report_time: str = DEFAULT_MORNING_TIME
    evening_report_enabled: bool = False
    evening_report_time: str = DEFAULT_EVENING_TIME
    custom_alerts: List[CustomAlert] = field(default_factory=list)

    def enabled_variants(self) -> List[VariantSchedule]:
        variants = []
        if self.morning_report_enabled:
            variants.append(VariantSchedule(MORNING, MORNING_DISPLAY_NAME, self.morning_report_time))
        if self.evening_report_enabled:
            variants.append(VariantSchedule(EVENING, EVENING_DISPLAY_NAME, self.evening_report_time))
        for alert in self.custom_alerts:
            if alert.enabled:
                variants.append(VariantSchedule(alert.variant, alert.name, alert.time))
        return variants


@dataclass
class PreferencesPatch:
    """Partial update of AlertPreferences; None leaves a field unchanged."""
    morning_report_enabled: Optional[bool] = None
    morning_report_time: Optional[str] = None
    evening_report_enabled: Optional[bool] = None
    evening_report_time: Optional[str] = None


@dataclass
class CustomAlertPatch:
    """Partial update of a CustomAlert; None leaves a field unchanged."""
    name: Optional[str] = None
    time: Optional[str] = None
    enabled: Optional[bool] = None


def apply_preferences_patch(
    existing: Optional[AlertPreferences],
    location_id: str,
    patch: PreferencesPatch,
) -> AlertPreferences:
    """
    Merge patch into existing preferences, or into defaults when none exist.

    Times are validated before anything is merged.

    Raises:
        ValueError: If a patched time is not a valid HH:MM string.
    """
    for value in (patch.morning_report_time, patch.evening_report_time):
        if value is not None:
            parse_time_of_day(value)

    base = existing if existing is not None else AlertPreferences(location_id=location_id)
    merged = replace(base, custom_alerts=list(base.custom_alerts))
    if patch.morning_report_enabled is not None:
        merged.morning_report_enabled = patch.morning_report_enabled
    if patch.morning_report_time is not None:
        merged.morning_report_time = patch.morning_report_time
    if patch.evening_report_enabled is not None:
        merged.evening_report_enabled = patch.evening_report_enabled
    if patch.evening_report_time is not None:
        merged.evening_report_time = patch.evening_report_time
    return merged


def apply_custom_alert_patch(alert: CustomAlert, patch: CustomAlertPatch) -> CustomAlert:
    """Merge patch into a custom alert, returning a new instance."""
    if patch.time is not None:
        parse_time_of_day(patch.time)
    if patch.name is not None and not patch.name.strip():
        raise ValueError("Custom alert name must not be empty")
    return CustomAlert(
        id=alert.id,
        name=patch.name if patch.name is not None else alert.name,
        time=patch.time if patch.time is not None else alert.time,
        enabled=patch.enabled if patch.enabled is not None else alert.enabled,
    )


class PreferenceService:
    """
    Persists preference edits and brings notifications in line with them.

    Every write is followed by reconcile for the location. A reconcile failure
    is logged and does not undo the preference write; the next reconcile
    retries it.
    """

    def __init__(self, store, manager, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.manager = manager
        self.clock = clock

    def get(self, location_id: str) -> AlertPreferences:
        prefs = self.store.get(location_id)
        return prefs if prefs is not None else AlertPreferences(location_id=location_id)

    def _save_and_reconcile(self, prefs: AlertPreferences) -> AlertPreferences:
        self.store.save(prefs, self.clock())
        try:
            self.manager.reconcile(prefs.location_id, prefs)
        except Exception as e:
            logger.error(f"Failed to update notifications for location {prefs.location_id}: {e}", exc_info=True)
        return prefs

    def update(self, location_id: str, patch: PreferencesPatch) -> AlertPreferences:
        merged = apply_preferences_patch(self.store.get(location_id), location_id, patch)
        return self._save_and_reconcile(merged)

    def add_custom_alert(self, location_id: str, name: str, time: str, enabled: bool = True) -> CustomAlert:
        parse_time_of_day(time)
        if not name.strip():
            raise ValueError("Custom alert name must not be empty")
        alert = CustomAlert(id=uuid.uuid4().hex, name=name.strip(), time=time, enabled=enabled)
        prefs = self.get(location_id)
        prefs.custom_alerts.append(alert)
        self._save_and_reconcile(prefs)
        return alert

    def update_custom_alert(self, location_id: str, alert_id: str, patch: CustomAlertPatch) -> Optional[CustomAlert]:
        prefs = self.get(location_id)
        for i, alert in enumerate(prefs.custom_alerts):
            if alert.id == alert_id:
                updated = apply_custom_alert_patch(alert, patch)
                prefs.custom_alerts[i] = updated
                self._save_and_reconcile(prefs)
                return updated
        logger.warning(f"Custom alert {alert_id} not found for location {location_id}")
        return None

    def delete_custom_alert(self, location_id: str, alert_id: str) -> bool:
        prefs = self.get(location_id)
        remaining = [a for a in prefs.custom_alerts if a.id != alert_id]
        if len(remaining) == len(prefs.custom_alerts):
            return False
        prefs.custom_alerts = remaining
        self._save_and_reconcile(prefs)
        return True

    def delete_location(self, location_id: str) -> None:
        """Forget a location's preferences and cancel all of its notifications."""
        self.store.delete(location_id)
        try:
            self.manager.reconcile(location_id, AlertPreferences(location_id=location_id))
        except Exception as e:
            logger.error(f"Failed to cancel notifications for location {location_id}: {e}", exc_info=True)
