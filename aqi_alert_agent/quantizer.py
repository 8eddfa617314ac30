"""Quantize environmental snapshots into coarse cache buckets."""

import math
from datetime import date
from typing import Optional

from .models import CacheBucket, EnvironmentalSnapshot

AQI_STEP = 5
POLLEN_STEP = 2
LIGHTNING_STEP = 10


def round_to_step(value: Optional[int], step: int) -> int:
    """
    Round a reading to the nearest multiple of step, halves rounding up.

    Missing readings (None or a negative sentinel) map to 0.
    """
    if value is None or value < 0:
        return 0
    return int(math.floor(value / step + 0.5)) * step


def quantize(snapshot: EnvironmentalSnapshot, on_date: date) -> CacheBucket:
    """
    Map a snapshot to its cache bucket for the given local calendar date.

    Args:
        snapshot: Current conditions for a location.
        on_date: Local calendar date the bucket belongs to.

    Returns:
        The quantized bucket. Deterministic for identical inputs.
    """
    return CacheBucket(
        aqi_level=round_to_step(snapshot.aqi, AQI_STEP),
        pollen_level=round_to_step(snapshot.pollen, POLLEN_STEP),
        lightning_level=round_to_step(snapshot.storm_probability, LIGHTNING_STEP),
        cache_date=on_date.strftime("%Y-%m-%d"),
    )
