"""Tests for agent wiring."""

import pytest

from aqi_alert_agent.lifecycle import ScheduleState
from aqi_alert_agent.main import track_deliveries

from .conftest import LOCATION_ID


class TestTrackDeliveries:

    def test_manager_sees_successful_delivery(self, manager):
        sent = []
        deliver = track_deliveries(sent.append, manager)
        seen = []
        manager.add_delivery_listener(lambda location_id, data: seen.append(location_id))

        deliver({"location_id": LOCATION_ID, "variant": "morning"})
        assert len(sent) == 1
        assert seen == [LOCATION_ID]

    def test_failed_delivery_still_clears_one_off_record(self, manager, platform, clock):
        def failing(payload):
            raise ConnectionError("sms gateway down")

        platform.deliver = track_deliveries(failing, manager)
        manager.schedule(LOCATION_ID, "custom:a1", "Pick-up", "15:30", recurring=False)

        assert platform.run_pending(clock().replace(hour=15, minute=30)) == 0
        assert platform.list_scheduled() == []
        assert manager.state(LOCATION_ID, "custom:a1") == ScheduleState.UNSCHEDULED

    def test_delivery_error_propagates(self, manager):
        def failing(payload):
            raise ConnectionError("sms gateway down")

        with pytest.raises(ConnectionError):
            track_deliveries(failing, manager)({"location_id": LOCATION_ID})
