"""Tests for alert preferences, their persistence and the preference service."""

import sqlite3

import pytest

from aqi_alert_agent.preferences import (
    AlertPreferences,
    CustomAlert,
    CustomAlertPatch,
    PreferenceService,
    PreferencesPatch,
    apply_custom_alert_patch,
    apply_preferences_patch,
)

from .conftest import LOCATION_ID


class TestApplyPreferencesPatch:

    def test_missing_preferences_start_from_defaults(self):
        prefs = apply_preferences_patch(None, LOCATION_ID, PreferencesPatch(morning_report_enabled=True))
        assert prefs.location_id == LOCATION_ID
        assert prefs.morning_report_enabled is True
        assert prefs.morning_report_time == "08:00"
        assert prefs.evening_report_enabled is False
        assert prefs.evening_report_time == "18:00"

    def test_unset_fields_are_left_alone(self):
        existing = AlertPreferences(
            location_id=LOCATION_ID,
            morning_report_enabled=True,
            morning_report_time="06:45",
            evening_report_enabled=True,
        )
        prefs = apply_preferences_patch(existing, LOCATION_ID, PreferencesPatch(evening_report_time="21:15"))
        assert prefs.morning_report_time == "06:45"
        assert prefs.morning_report_enabled is True
        assert prefs.evening_report_time == "21:15"

    def test_existing_object_is_not_mutated(self):
        existing = AlertPreferences(location_id=LOCATION_ID)
        apply_preferences_patch(existing, LOCATION_ID, PreferencesPatch(morning_report_enabled=True))
        assert existing.morning_report_enabled is False

    def test_invalid_time_rejected(self):
        with pytest.raises(ValueError):
            apply_preferences_patch(None, LOCATION_ID, PreferencesPatch(morning_report_time="7 o'clock"))


class TestCustomAlertPatch:

    def test_merges_fields(self):
        alert = CustomAlert(id="a1", name="School Run", time="07:45")
        updated = apply_custom_alert_patch(alert, CustomAlertPatch(time="08:10", enabled=False))
        assert (updated.name, updated.time, updated.enabled) == ("School Run", "08:10", False)
        assert alert.time == "07:45"

    def test_blank_name_rejected(self):
        with pytest.raises(ValueError):
            apply_custom_alert_patch(CustomAlert(id="a1", name="x", time="07:00"), CustomAlertPatch(name="  "))


class TestEnabledVariants:

    def test_lists_enabled_variants_in_order(self):
        prefs = AlertPreferences(
            location_id=LOCATION_ID,
            morning_report_enabled=True,
            evening_report_enabled=False,
            custom_alerts=[
                CustomAlert(id="a1", name="Run", time="06:30"),
                CustomAlert(id="a2", name="Off", time="12:00", enabled=False),
            ],
        )
        variants = prefs.enabled_variants()
        assert [(v.variant, v.display_name, v.time_of_day) for v in variants] == [
            ("morning", "Morning Report", "08:00"),
            ("custom:a1", "Run", "06:30"),
        ]


class TestPreferenceStore:

    def test_round_trip(self, preference_store, clock):
        prefs = AlertPreferences(
            location_id=LOCATION_ID,
            morning_report_enabled=True,
            morning_report_time="07:15",
            custom_alerts=[CustomAlert(id="a1", name="Run", time="06:30", enabled=False)],
        )
        preference_store.save(prefs, clock())
        assert preference_store.get(LOCATION_ID) == prefs
        assert preference_store.location_ids() == [LOCATION_ID]

    def test_unknown_location(self, preference_store):
        assert preference_store.get("nowhere") is None

    def test_custom_alert_order_survives_rewrites(self, preference_store, clock):
        prefs = AlertPreferences(location_id=LOCATION_ID, custom_alerts=[CustomAlert(id="b", name="B", time="09:00")])
        preference_store.save(prefs, clock())
        clock.advance(minutes=1)
        prefs.custom_alerts.append(CustomAlert(id="a", name="A", time="10:00"))
        preference_store.save(prefs, clock())

        assert [a.id for a in preference_store.get(LOCATION_ID).custom_alerts] == ["b", "a"]

    def test_failed_save_leaves_previous_alerts_intact(self, preference_store, clock):
        original = AlertPreferences(
            location_id=LOCATION_ID,
            morning_report_enabled=True,
            custom_alerts=[CustomAlert(id="a1", name="Run", time="06:30")],
        )
        preference_store.save(original, clock())

        clashing = AlertPreferences(
            location_id=LOCATION_ID,
            custom_alerts=[
                CustomAlert(id="dup", name="One", time="09:00"),
                CustomAlert(id="dup", name="Two", time="10:00"),
            ],
        )
        with pytest.raises(sqlite3.IntegrityError):
            preference_store.save(clashing, clock())

        assert preference_store.get(LOCATION_ID) == original

    def test_stores_share_the_connection_lock(self, conn, cache_store, schedule_store, preference_store):
        assert cache_store._lock is conn.lock
        assert schedule_store._lock is conn.lock
        assert preference_store._lock is conn.lock

    def test_delete(self, preference_store, clock):
        preference_store.save(AlertPreferences(location_id=LOCATION_ID), clock())
        preference_store.delete(LOCATION_ID)
        assert preference_store.get(LOCATION_ID) is None


class TestPreferenceService:

    @pytest.fixture
    def service(self, preference_store, manager, clock):
        return PreferenceService(preference_store, manager, clock)

    def test_get_returns_defaults_for_new_location(self, service):
        prefs = service.get(LOCATION_ID)
        assert prefs == AlertPreferences(location_id=LOCATION_ID)

    def test_update_persists_and_schedules(self, service, preference_store, manager):
        service.update(LOCATION_ID, PreferencesPatch(morning_report_enabled=True, morning_report_time="07:30"))

        assert preference_store.get(LOCATION_ID).morning_report_time == "07:30"
        records = manager.records(LOCATION_ID)
        assert [(r.variant, r.time_of_day) for r in records] == [("morning", "07:30")]

    def test_disabling_cancels(self, service, manager, platform):
        service.update(LOCATION_ID, PreferencesPatch(morning_report_enabled=True, evening_report_enabled=True))
        service.update(LOCATION_ID, PreferencesPatch(evening_report_enabled=False))

        assert [r.variant for r in manager.records(LOCATION_ID)] == ["morning"]
        assert len(platform.list_scheduled()) == 1

    def test_custom_alert_lifecycle(self, service, manager):
        alert = service.add_custom_alert(LOCATION_ID, " Lunch Walk ", "12:15")
        assert alert.name == "Lunch Walk"
        assert manager.records(LOCATION_ID)[0].variant == f"custom:{alert.id}"

        updated = service.update_custom_alert(LOCATION_ID, alert.id, CustomAlertPatch(time="12:45"))
        assert updated.time == "12:45"
        assert manager.records(LOCATION_ID)[0].time_of_day == "12:45"

        assert service.delete_custom_alert(LOCATION_ID, alert.id) is True
        assert manager.records(LOCATION_ID) == []

    def test_unknown_custom_alert(self, service):
        assert service.update_custom_alert(LOCATION_ID, "missing", CustomAlertPatch(name="x")) is None
        assert service.delete_custom_alert(LOCATION_ID, "missing") is False

    def test_add_custom_alert_validates(self, service):
        with pytest.raises(ValueError):
            service.add_custom_alert(LOCATION_ID, "Bad", "99:00")
        with pytest.raises(ValueError):
            service.add_custom_alert(LOCATION_ID, "   ", "09:00")

    def test_delete_location_cancels_everything(self, service, preference_store, platform):
        service.update(LOCATION_ID, PreferencesPatch(morning_report_enabled=True, evening_report_enabled=True))
        service.delete_location(LOCATION_ID)

        assert preference_store.get(LOCATION_ID) is None
        assert platform.list_scheduled() == []

    def test_reconcile_failure_keeps_preference_write(self, preference_store, clock):
        class BrokenManager:
            def reconcile(self, location_id, preferences):
                raise RuntimeError("platform unavailable")

        service = PreferenceService(preference_store, BrokenManager(), clock)
        prefs = service.update(LOCATION_ID, PreferencesPatch(morning_report_enabled=True))

        assert prefs.morning_report_enabled is True
        assert preference_store.get(LOCATION_ID).morning_report_enabled is True
