"""Data models for alert content and scheduled notifications."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

UNKNOWN = -1  # sentinel for a reading the provider could not supply

MORNING = "morning"
EVENING = "evening"
CUSTOM = "custom"
CUSTOM_PREFIX = "custom:"

KEY_DELIMITER = "|"


def custom_variant(alert_id: str) -> str:
    """Variant id for a user-defined custom alert."""
    return f"{CUSTOM_PREFIX}{alert_id}"


def variant_kind(variant: str) -> str:
    """Map a variant id to morning, evening or custom."""
    if variant in (MORNING, EVENING):
        return variant
    return CUSTOM


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """
    Parse an "HH:MM" (or "HH:MM:SS") string into (hour, minute).

    Raises:
        ValueError: If the string is not a valid time of day.
    """
    parts = str(value).strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM")
    try:
        hour = int(parts[0])
        minute = int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM") from None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Time of day {value!r} out of range")
    return hour, minute


def format_time_of_day(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


@dataclass(frozen=True)
class EnvironmentalSnapshot:
    """Conditions for one location at one moment, produced by a snapshot provider."""
    location_id: str
    aqi: Optional[int] = UNKNOWN
    pollen: Optional[int] = UNKNOWN            # overall pollen index
    storm_probability: Optional[int] = UNKNOWN  # percent
    source: str = "unknown"                     # active data source id
    location_name: Optional[str] = None

    @classmethod
    def unknown(cls, location_id: str) -> "EnvironmentalSnapshot":
        """Sentinel snapshot used when the provider fails."""
        return cls(location_id=location_id)


@dataclass(frozen=True)
class CacheBucket:
    """Quantized conditions; a 0 level means no/low signal."""
    aqi_level: int
    pollen_level: int
    lightning_level: int
    cache_date: str  # YYYY-MM-DD, local calendar


@dataclass(frozen=True)
class CacheKey:
    """Identity of a cached alert message."""
    location_id: str
    alert_variant: str
    source_id: str
    aqi_level: int
    pollen_level: int
    lightning_level: int
    cache_date: str

    @property
    def bucket(self) -> CacheBucket:
        return CacheBucket(
            aqi_level=self.aqi_level,
            pollen_level=self.pollen_level,
            lightning_level=self.lightning_level,
            cache_date=self.cache_date,
        )

    def to_string(self) -> str:
        return KEY_DELIMITER.join([
            self.location_id,
            self.alert_variant,
            self.source_id,
            str(self.aqi_level),
            str(self.pollen_level),
            str(self.lightning_level),
            self.cache_date,
        ])

    @classmethod
    def from_string(cls, value: str) -> "CacheKey":
        parts = value.split(KEY_DELIMITER)
        if len(parts) != 7:
            raise ValueError(f"Malformed cache key {value!r}")
        location_id, variant, source_id, aqi, pollen, lightning, cache_date = parts
        return cls(
            location_id=location_id,
            alert_variant=variant,
            source_id=source_id,
            aqi_level=int(aqi),
            pollen_level=int(pollen),
            lightning_level=int(lightning),
            cache_date=cache_date,
        )


@dataclass
class CacheEntry:
    """A generated message stored under a cache key."""
    key: CacheKey
    message: str
    created_at: datetime
    expires_at: datetime
    last_accessed_at: datetime
    access_count: int = 1


@dataclass
class NotificationPayload:
    """Static content handed to the platform at registration time."""
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ScheduleRecord:
    """The single active schedule for a (location, variant) pair."""
    location_id: str
    variant: str
    display_name: str
    hour: int
    minute: int
    recurring: bool
    handle: str    # returned by the platform primitive
    body: str      # pre-rendered message body
    created_at: datetime

    @property
    def key(self) -> Tuple[str, str]:
        return self.location_id, self.variant

    @property
    def time_of_day(self) -> str:
        return format_time_of_day(self.hour, self.minute)
