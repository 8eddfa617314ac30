"""
Shared pytest fixtures for the alert agent tests.

Everything runs against an in-memory SQLite database, a controllable clock,
a scripted LLM client and a dictionary-backed snapshot provider.
"""

import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest

from aqi_alert_agent.alert_generator import AlertGenerator
from aqi_alert_agent.config import CacheConfig, LLMConfig
from aqi_alert_agent.content_cache import ContentCache
from aqi_alert_agent.db import CacheStore, PreferenceStore, ScheduleStore, init_db
from aqi_alert_agent.lifecycle import NotificationLifecycleManager
from aqi_alert_agent.llm_client import LLMClient
from aqi_alert_agent.models import EnvironmentalSnapshot, NotificationPayload
from aqi_alert_agent.notification_platform import LocalNotificationPlatform
from aqi_alert_agent.scheduler import RefreshQueue
from aqi_alert_agent.snapshot_provider import LocationNotFoundError, SnapshotProvider

START = datetime(2025, 1, 15, 7, 0)
LOCATION_ID = "loc-1"


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeLLMClient(LLMClient):
    """Scripted LLM client that records every call."""

    def __init__(self, response: str = "Clean air this morning, great day for a walk!",
                 error: Optional[Exception] = None, delay: float = 0.0):
        self.response = response
        self.error = error
        self.delay = delay
        self.calls: List[dict] = []

    def complete(self, system_prompt: str, prompt: str, max_tokens: int, temperature: float) -> str:
        self.calls.append({
            "system_prompt": system_prompt,
            "prompt": prompt,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


class StubSnapshotProvider(SnapshotProvider):
    """Serves snapshots from a dict; unknown ids raise LocationNotFoundError."""

    def __init__(self, snapshots: Optional[Dict[str, EnvironmentalSnapshot]] = None,
                 error: Optional[Exception] = None):
        self.snapshots = dict(snapshots or {})
        self.error = error
        self.calls: List[str] = []

    def fetch_snapshot(self, location_id: str) -> EnvironmentalSnapshot:
        self.calls.append(location_id)
        if self.error is not None:
            raise self.error
        if location_id not in self.snapshots:
            raise LocationNotFoundError(location_id)
        return self.snapshots[location_id]


def make_snapshot(aqi=52, pollen=3, storm=12, source="airnow", location_id=LOCATION_ID, name="Springfield"):
    return EnvironmentalSnapshot(
        location_id=location_id,
        aqi=aqi,
        pollen=pollen,
        storm_probability=storm,
        source=source,
        location_name=name,
    )


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def conn():
    connection = init_db(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def cache_store(conn):
    return CacheStore(conn)


@pytest.fixture
def schedule_store(conn):
    return ScheduleStore(conn)


@pytest.fixture
def preference_store(conn):
    return PreferenceStore(conn)


@pytest.fixture
def cache_config():
    return CacheConfig()


@pytest.fixture
def cache(cache_store, cache_config, clock):
    return ContentCache(cache_store, cache_config, clock)


@pytest.fixture
def llm():
    return FakeLLMClient()


@pytest.fixture
def generator(llm):
    gen = AlertGenerator(llm, LLMConfig(api_key="test-key", timeout_seconds=2.0))
    yield gen
    gen.close()


@pytest.fixture
def snapshots():
    return StubSnapshotProvider({LOCATION_ID: make_snapshot()})


@pytest.fixture
def delivered():
    return []


@pytest.fixture
def platform(clock, delivered):
    def deliver(payload: NotificationPayload) -> None:
        delivered.append(payload)

    return LocalNotificationPlatform(deliver=deliver, clock=clock)


@pytest.fixture
def refresh_queue():
    return RefreshQueue()


@pytest.fixture
def manager(platform, snapshots, cache, generator, schedule_store, refresh_queue, clock):
    return NotificationLifecycleManager(
        platform=platform,
        snapshot_provider=snapshots,
        cache=cache,
        generator=generator,
        schedule_store=schedule_store,
        refresh_queue=refresh_queue,
        refresh_lead=timedelta(minutes=30),
        clock=clock,
    )
