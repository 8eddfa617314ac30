"""Cache key derivation for generated alert messages."""

from datetime import date
from typing import Optional

from .models import CacheKey, EnvironmentalSnapshot
from .quantizer import quantize


def build_cache_key(
    snapshot: EnvironmentalSnapshot,
    variant: str,
    on_date: date,
    location_id: Optional[str] = None,
) -> CacheKey:
    """
    Build the cache key for a snapshot, alert variant and local date.

    Two snapshots that quantize to the same bucket for the same location,
    variant, source and date give keys with identical string forms.
    location_id overrides the snapshot's own location id when given.
    """
    bucket = quantize(snapshot, on_date)
    return CacheKey(
        location_id=location_id or snapshot.location_id,
        alert_variant=variant,
        source_id=snapshot.source or "unknown",
        aqi_level=bucket.aqi_level,
        pollen_level=bucket.pollen_level,
        lightning_level=bucket.lightning_level,
        cache_date=bucket.cache_date,
    )
