"""Environmental snapshot providers."""

import logging
from abc import ABC, abstractmethod

import requests

from .config import SnapshotConfig
from .models import UNKNOWN, EnvironmentalSnapshot

logger = logging.getLogger(__name__)


class LocationNotFoundError(LookupError):
    """Raised when a provider does not know the requested location."""


class SnapshotProvider(ABC):
    """Source of current conditions for a location."""

    @abstractmethod
    def fetch_snapshot(self, location_id: str) -> EnvironmentalSnapshot:
        """
        Fetch current conditions.

        Raises:
            LocationNotFoundError: If the location cannot be resolved.
            Exception: Any transient failure (network, timeout, bad payload).
        """
        pass


def fetch_snapshot_or_fallback(provider: SnapshotProvider, location_id: str) -> EnvironmentalSnapshot:
    """
    Fetch a snapshot, substituting sentinel readings on transient failure.

    LocationNotFoundError is propagated so callers can fail closed.
    """
    try:
        return provider.fetch_snapshot(location_id)
    except LocationNotFoundError:
        raise
    except Exception as e:
        logger.warning(f"Snapshot fetch failed for location {location_id}, using unknown readings: {e}")
        return EnvironmentalSnapshot.unknown(location_id)


def _reading(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        return UNKNOWN
    return int(round(float(value)))


class HTTPSnapshotProvider(SnapshotProvider):
    """
    Reads snapshots from a JSON endpoint.

    GET {api_url}/locations/{location_id}/snapshot is expected to return
    {"aqi": .., "pollen": .., "storm_probability": .., "source": .., "name": ..};
    any reading may be null.
    """

    def __init__(self, config: SnapshotConfig):
        if not config.api_url:
            raise ValueError("SNAPSHOT_API_URL is required for the HTTP snapshot provider")
        self.base_url = config.api_url.rstrip("/")
        self.timeout = config.timeout_seconds
        self.session = requests.Session()

    def fetch_snapshot(self, location_id: str) -> EnvironmentalSnapshot:
        url = f"{self.base_url}/locations/{location_id}/snapshot"
        response = self.session.get(url, timeout=self.timeout)
        if response.status_code == 404:
            raise LocationNotFoundError(f"Unknown location {location_id}")
        response.raise_for_status()
        data = response.json()
        return EnvironmentalSnapshot(
            location_id=location_id,
            aqi=_reading(data, "aqi"),
            pollen=_reading(data, "pollen"),
            storm_probability=_reading(data, "storm_probability"),
            source=data.get("source") or "unknown",
            location_name=data.get("name"),
        )
