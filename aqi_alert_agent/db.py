"""SQLite persistence for cached alerts, schedule records and alert preferences."""

import sqlite3
import threading
from datetime import datetime
from typing import List, Optional

from .models import CacheEntry, CacheKey, ScheduleRecord
from .preferences import AlertPreferences, CustomAlert


def _ts(value: datetime) -> str:
    # Fixed width so timestamps compare correctly as text
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


class LockedConnection(sqlite3.Connection):
    """Connection carrying the lock every store on it must hold."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.lock = threading.RLock()


def init_db(db_path: str) -> LockedConnection:
    """
    Initialize the database and create tables if they don't exist.

    Args:
        db_path: Path to the SQLite database file (":memory:" for tests).

    Returns:
        A connection to the database, usable from multiple threads. Stores
        built on it share its lock so their writes never interleave.
    """
    conn = sqlite3.connect(db_path, check_same_thread=False, factory=LockedConnection)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS alert_cache (
            cache_key TEXT PRIMARY KEY,
            location_id TEXT NOT NULL,
            alert_variant TEXT NOT NULL,
            source_id TEXT NOT NULL,
            aqi_level INTEGER NOT NULL,
            pollen_level INTEGER NOT NULL DEFAULT 0,
            lightning_level INTEGER NOT NULL DEFAULT 0,
            cache_date TEXT NOT NULL,
            message TEXT NOT NULL,
            created_at TEXT NOT NULL,
            expires_at TEXT NOT NULL,
            last_accessed_at TEXT NOT NULL,
            access_count INTEGER NOT NULL DEFAULT 1
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_alert_cache_fuzzy
        ON alert_cache (location_id, alert_variant, source_id, cache_date)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_alert_cache_date ON alert_cache (cache_date)
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schedule_records (
            location_id TEXT NOT NULL,
            variant TEXT NOT NULL,
            display_name TEXT NOT NULL,
            hour INTEGER NOT NULL,
            minute INTEGER NOT NULL,
            recurring INTEGER NOT NULL,
            handle TEXT NOT NULL,
            body TEXT NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (location_id, variant)
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS alert_preferences (
            location_id TEXT PRIMARY KEY,
            morning_report_enabled INTEGER NOT NULL DEFAULT 0,
            morning_report_time TEXT NOT NULL DEFAULT '08:00',
            evening_report_enabled INTEGER NOT NULL DEFAULT 0,
            evening_report_time TEXT NOT NULL DEFAULT '18:00',
            updated_at TEXT NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS custom_alerts (
            id TEXT PRIMARY KEY,
            location_id TEXT NOT NULL,
            alert_name TEXT NOT NULL,
            alert_time TEXT NOT NULL,
            enabled INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL
        )
    """)
    conn.commit()
    return conn


class CacheStore:
    """Keyed table of generated alert messages."""

    _COLUMNS = (
        "cache_key, location_id, alert_variant, source_id, aqi_level, pollen_level, "
        "lightning_level, cache_date, message, created_at, expires_at, "
        "last_accessed_at, access_count"
    )

    def __init__(self, conn: LockedConnection):
        self.conn = conn
        self._lock = conn.lock

    @staticmethod
    def _row_to_entry(row) -> CacheEntry:
        return CacheEntry(
            key=CacheKey(
                location_id=row[1],
                alert_variant=row[2],
                source_id=row[3],
                aqi_level=row[4],
                pollen_level=row[5],
                lightning_level=row[6],
                cache_date=row[7],
            ),
            message=row[8],
            created_at=_parse_ts(row[9]),
            expires_at=_parse_ts(row[10]),
            last_accessed_at=_parse_ts(row[11]),
            access_count=row[12],
        )

    def get(self, cache_key: str, now: datetime) -> Optional[CacheEntry]:
        """Return the non-expired entry stored under cache_key, if any."""
        with self._lock:
            cursor = self.conn.execute(
                f"SELECT {self._COLUMNS} FROM alert_cache WHERE cache_key = ? AND expires_at > ?",
                (cache_key, _ts(now)),
            )
            row = cursor.fetchone()
        return self._row_to_entry(row) if row else None

    def touch(self, cache_key: str, now: datetime) -> None:
        """Record a read of cache_key."""
        with self._lock:
            self.conn.execute(
                "UPDATE alert_cache SET last_accessed_at = ?, access_count = access_count + 1 "
                "WHERE cache_key = ?",
                (_ts(now), cache_key),
            )
            self.conn.commit()

    def query_by_prefix(
        self,
        location_id: str,
        variant: str,
        source_id: str,
        cache_date: str,
        now: datetime,
        limit: int,
    ) -> List[CacheEntry]:
        """Non-expired entries for a location/variant/source/date, newest first."""
        with self._lock:
            cursor = self.conn.execute(
                f"""
                SELECT {self._COLUMNS} FROM alert_cache
                WHERE location_id = ? AND alert_variant = ? AND source_id = ?
                  AND cache_date = ? AND expires_at > ?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (location_id, variant, source_id, cache_date, _ts(now), limit),
            )
            rows = cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    def upsert(self, entry: CacheEntry) -> None:
        """Insert entry, replacing any row with the same key (last write wins)."""
        key = entry.key
        with self._lock:
            self.conn.execute(
                f"""
                INSERT INTO alert_cache ({self._COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                    message = excluded.message,
                    created_at = excluded.created_at,
                    expires_at = excluded.expires_at,
                    last_accessed_at = excluded.last_accessed_at,
                    access_count = excluded.access_count
                """,
                (
                    key.to_string(),
                    key.location_id,
                    key.alert_variant,
                    key.source_id,
                    key.aqi_level,
                    key.pollen_level,
                    key.lightning_level,
                    key.cache_date,
                    entry.message,
                    _ts(entry.created_at),
                    _ts(entry.expires_at),
                    _ts(entry.last_accessed_at),
                    entry.access_count,
                ),
            )
            self.conn.commit()

    def delete_older_than(self, cache_date: str) -> int:
        """Delete entries whose cache_date is before cache_date. Returns the count."""
        with self._lock:
            cursor = self.conn.execute(
                "DELETE FROM alert_cache WHERE cache_date < ?", (cache_date,)
            )
            self.conn.commit()
        return cursor.rowcount

    def delete_expired(self, now: datetime) -> int:
        """Delete entries past their expiry. Returns the count."""
        with self._lock:
            cursor = self.conn.execute(
                "DELETE FROM alert_cache WHERE expires_at <= ?", (_ts(now),)
            )
            self.conn.commit()
        return cursor.rowcount


class ScheduleStore:
    """Persistent schedule records, one row per (location, variant)."""

    def __init__(self, conn: LockedConnection):
        self.conn = conn
        self._lock = conn.lock

    @staticmethod
    def _row_to_record(row) -> ScheduleRecord:
        return ScheduleRecord(
            location_id=row[0],
            variant=row[1],
            display_name=row[2],
            hour=row[3],
            minute=row[4],
            recurring=bool(row[5]),
            handle=row[6],
            body=row[7],
            created_at=_parse_ts(row[8]),
        )

    def get(self, location_id: str, variant: str) -> Optional[ScheduleRecord]:
        with self._lock:
            cursor = self.conn.execute(
                "SELECT location_id, variant, display_name, hour, minute, recurring, handle, body, created_at "
                "FROM schedule_records WHERE location_id = ? AND variant = ?",
                (location_id, variant),
            )
            row = cursor.fetchone()
        return self._row_to_record(row) if row else None

    def list(self, location_id: Optional[str] = None) -> List[ScheduleRecord]:
        query = (
            "SELECT location_id, variant, display_name, hour, minute, recurring, handle, body, created_at "
            "FROM schedule_records"
        )
        params: tuple = ()
        if location_id is not None:
            query += " WHERE location_id = ?"
            params = (location_id,)
        query += " ORDER BY location_id, variant"
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def save(self, record: ScheduleRecord) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO schedule_records "
                "(location_id, variant, display_name, hour, minute, recurring, handle, body, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.location_id,
                    record.variant,
                    record.display_name,
                    record.hour,
                    record.minute,
                    int(record.recurring),
                    record.handle,
                    record.body,
                    _ts(record.created_at),
                ),
            )
            self.conn.commit()

    def delete(self, location_id: str, variant: str) -> None:
        with self._lock:
            self.conn.execute(
                "DELETE FROM schedule_records WHERE location_id = ? AND variant = ?",
                (location_id, variant),
            )
            self.conn.commit()


class PreferenceStore:
    """Alert preferences and custom alerts per location."""

    def __init__(self, conn: LockedConnection):
        self.conn = conn
        self._lock = conn.lock

    def get(self, location_id: str) -> Optional[AlertPreferences]:
        with self._lock:
            row = self.conn.execute(
                "SELECT location_id, morning_report_enabled, morning_report_time, "
                "evening_report_enabled, evening_report_time "
                "FROM alert_preferences WHERE location_id = ?",
                (location_id,),
            ).fetchone()
            alert_rows = self.conn.execute(
                "SELECT id, alert_name, alert_time, enabled FROM custom_alerts "
                "WHERE location_id = ? ORDER BY created_at, id",
                (location_id,),
            ).fetchall()
        if row is None and not alert_rows:
            return None
        prefs = AlertPreferences(location_id=location_id)
        if row is not None:
            prefs.morning_report_enabled = bool(row[1])
            prefs.morning_report_time = row[2]
            prefs.evening_report_enabled = bool(row[3])
            prefs.evening_report_time = row[4]
        prefs.custom_alerts = [
            CustomAlert(id=r[0], name=r[1], time=r[2], enabled=bool(r[3]))
            for r in alert_rows
        ]
        return prefs

    def location_ids(self) -> List[str]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT location_id FROM alert_preferences "
                "UNION SELECT location_id FROM custom_alerts ORDER BY 1"
            ).fetchall()
        return [row[0] for row in rows]

    def save(self, prefs: AlertPreferences, now: datetime) -> None:
        """Replace the stored preferences and custom alerts for a location."""
        # Preferences and custom alerts are replaced atomically
        with self._lock, self.conn:
            self.conn.execute(
                "INSERT OR REPLACE INTO alert_preferences "
                "(location_id, morning_report_enabled, morning_report_time, "
                "evening_report_enabled, evening_report_time, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    prefs.location_id,
                    int(prefs.morning_report_enabled),
                    prefs.morning_report_time,
                    int(prefs.evening_report_enabled),
                    prefs.evening_report_time,
                    _ts(now),
                ),
            )
            existing = {
                r[0]: r[1]
                for r in self.conn.execute(
                    "SELECT id, created_at FROM custom_alerts WHERE location_id = ?",
                    (prefs.location_id,),
                ).fetchall()
            }
            self.conn.execute(
                "DELETE FROM custom_alerts WHERE location_id = ?", (prefs.location_id,)
            )
            self.conn.executemany(
                "INSERT INTO custom_alerts (id, location_id, alert_name, alert_time, enabled, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (
                        alert.id,
                        prefs.location_id,
                        alert.name,
                        alert.time,
                        int(alert.enabled),
                        existing.get(alert.id, _ts(now)),
                    )
                    for alert in prefs.custom_alerts
                ],
            )

    def delete(self, location_id: str) -> None:
        with self._lock:
            self.conn.execute("DELETE FROM alert_preferences WHERE location_id = ?", (location_id,))
            self.conn.execute("DELETE FROM custom_alerts WHERE location_id = ?", (location_id,))
            self.conn.commit()
