"""
Cache of generated alert messages.

Lookups try the exact quantized key first, then fall back to the closest
recent entry for the same location, variant, source and day. The cache is an
optimization only: store errors are logged and treated as misses.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from .cache_key import build_cache_key
from .config import CacheConfig
from .models import CacheBucket, CacheEntry, CacheKey, EnvironmentalSnapshot

logger = logging.getLogger(__name__)


def bucket_distance(a: CacheBucket, b: CacheBucket) -> int:
    """Manhattan distance over the three quantized levels."""
    return (
        abs(a.aqi_level - b.aqi_level)
        + abs(a.pollen_level - b.pollen_level)
        + abs(a.lightning_level - b.lightning_level)
    )


def select_fuzzy_match(
    candidates: Sequence[CacheEntry],
    bucket: CacheBucket,
    tolerance: int,
) -> Optional[CacheEntry]:
    """
    Pick the candidate closest to bucket, or None if none is within tolerance.

    Ties go to the most recently created entry.
    """
    best: Optional[CacheEntry] = None
    best_distance = 0
    for candidate in candidates:
        distance = bucket_distance(candidate.key.bucket, bucket)
        if (
            best is None
            or distance < best_distance
            or (distance == best_distance and candidate.created_at > best.created_at)
        ):
            best = candidate
            best_distance = distance
    if best is None or best_distance > tolerance:
        return None
    return best


class ContentCache:
    """Exact/fuzzy cache of alert messages over a keyed store."""

    def __init__(self, store, config: Optional[CacheConfig] = None, clock: Callable[[], datetime] = datetime.now):
        """
        Args:
            store: Object offering get, touch, query_by_prefix, upsert,
                delete_older_than and delete_expired (see db.CacheStore).
            config: Tolerance, candidate count and expiry horizon.
            clock: Returns the current local time.
        """
        self.store = store
        self.config = config or CacheConfig()
        self.clock = clock

    def key_for(self, snapshot: EnvironmentalSnapshot, location_id: str, variant: str) -> CacheKey:
        return build_cache_key(snapshot, variant, self.clock().date(), location_id=location_id)

    def lookup(self, snapshot: EnvironmentalSnapshot, location_id: str, variant: str) -> Optional[str]:
        """
        Find a cached message for the snapshot's conditions.

        Returns:
            The cached message, or None on a miss or store failure.
        """
        now = self.clock()
        key = build_cache_key(snapshot, variant, now.date(), location_id=location_id)
        key_string = key.to_string()

        try:
            entry = self.store.get(key_string, now)
            if entry is not None:
                try:
                    self.store.touch(key_string, now)
                except Exception as e:
                    logger.warning(f"Alert cache access tracking failed for {key_string}: {e}")
                logger.debug(f"Exact alert cache hit for {key_string}")
                return entry.message

            candidates = self.store.query_by_prefix(
                key.location_id,
                key.alert_variant,
                key.source_id,
                key.cache_date,
                now,
                self.config.fuzzy_candidates,
            )
        except Exception as e:
            logger.error(f"Error checking alert cache for {key_string}: {e}")
            return None

        match = select_fuzzy_match(candidates, key.bucket, self.config.fuzzy_tolerance)
        if match is None:
            logger.debug(f"Alert cache miss for {key_string} ({len(candidates)} candidates)")
            return None

        logger.debug(
            f"Fuzzy alert cache hit for {key_string} using {match.key.to_string()} "
            f"(distance {bucket_distance(match.key.bucket, key.bucket)})"
        )
        return match.message

    def insert(self, key: CacheKey, message: str) -> None:
        """Store message under key. Failures are logged, never raised."""
        now = self.clock()
        entry = CacheEntry(
            key=key,
            message=message,
            created_at=now,
            expires_at=now + timedelta(hours=self.config.expiry_hours),
            last_accessed_at=now,
        )
        try:
            self.store.upsert(entry)
            logger.debug(f"Cached alert message for {key.to_string()}")
        except Exception as e:
            logger.error(f"Error caching alert for {key.to_string()}: {e}")

    def sweep(self, max_age_days: Optional[int] = None) -> int:
        """
        Delete entries dated before today minus max_age_days, plus any already expired.

        Returns:
            Number of entries removed (0 if the store failed).
        """
        if max_age_days is None:
            max_age_days = self.config.sweep_max_age_days
        now = self.clock()
        cutoff = (now.date() - timedelta(days=max_age_days)).strftime("%Y-%m-%d")
        try:
            cleared = self.store.delete_older_than(cutoff)
            cleared += self.store.delete_expired(now)
        except Exception as e:
            logger.error(f"Error clearing old alert cache: {e}")
            return 0
        logger.info(f"Cleared {cleared} old alert cache entries")
        return cleared
