"""TTL-bounded step cache that lets a failed pipeline run resume.

Entries are keyed by (run date, schedule, step number). An entry is valid while
``now - cached_at <= ttl``; expired, missing and undecodable entries all read as
absent. Entries are only ever removed in bulk by :meth:`StepCache.clear` after a
successful run, so a crashed run leaves its completed steps behind for the next
invocation to pick up.
"""

import json
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from sentimeter.core.clock import Clock, SystemClock
from sentimeter.core.logger import logger
from sentimeter.models.datatypes import RunKey, StepCacheEntry

DEFAULT_TTL_SECONDS = 60 * 60

# (cached_at ISO-8601 string, JSON payload string)
CacheRecord = Tuple[str, str]


class StepCacheBackend(ABC):
    """Storage for raw step cache records. Knows nothing about TTLs or JSON."""

    @abstractmethod
    def read(self, run_key: RunKey, step: int) -> Optional[CacheRecord]:
        pass

    @abstractmethod
    def write(self, run_key: RunKey, step: int, cached_at: str, payload: str) -> None:
        pass

    @abstractmethod
    def delete(self, run_key: RunKey) -> int:
        """Remove every record for ``run_key``. Returns the number removed."""
        pass


class MemoryStepCacheBackend(StepCacheBackend):
    """Process-local backend, used by tests and dry runs."""

    def __init__(self) -> None:
        self.records: Dict[Tuple[str, str, int], CacheRecord] = {}

    @staticmethod
    def _key(run_key: RunKey, step: int) -> Tuple[str, str, int]:
        return (run_key.date.isoformat(), run_key.schedule.value, step)

    def read(self, run_key: RunKey, step: int) -> Optional[CacheRecord]:
        return self.records.get(self._key(run_key, step))

    def write(self, run_key: RunKey, step: int, cached_at: str, payload: str) -> None:
        self.records[self._key(run_key, step)] = (cached_at, payload)

    def delete(self, run_key: RunKey) -> int:
        prefix = self._key(run_key, 0)[:2]
        doomed = [k for k in self.records if k[:2] == prefix]
        for k in doomed:
            del self.records[k]
        return len(doomed)


class SQLiteStepCacheBackend(StepCacheBackend):
    """Durable backend: one row per (run_date, schedule, step)."""

    def __init__(self, db_path: str = "output/sentimeter.db") -> None:
        """
        Initialize the SQLite step cache.

        Args:
            db_path (str): Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a connection to the SQLite database."""
        return sqlite3.connect(self.db_path, check_same_thread=False)

    def _init_db(self) -> None:
        """Create the step_cache table if it doesn't exist."""
        with self._get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS step_cache (
                    run_date TEXT NOT NULL,
                    schedule TEXT NOT NULL,
                    step INTEGER NOT NULL,
                    cached_at TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    PRIMARY KEY (run_date, schedule, step)
                )
                """
            )

    def read(self, run_key: RunKey, step: int) -> Optional[CacheRecord]:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT cached_at, payload FROM step_cache "
                    "WHERE run_date = ? AND schedule = ? AND step = ?",
                    (run_key.date.isoformat(), run_key.schedule.value, step),
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"SQLite error reading step {step} for {run_key}: {e}")
            return None
        return (row[0], row[1]) if row else None

    def write(self, run_key: RunKey, step: int, cached_at: str, payload: str) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO step_cache (run_date, schedule, step, cached_at, payload)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (run_key.date.isoformat(), run_key.schedule.value, step, cached_at, payload),
                )
        except sqlite3.Error as e:
            logger.error(f"SQLite error saving step {step} for {run_key}: {e}")

    def delete(self, run_key: RunKey) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM step_cache WHERE run_date = ? AND schedule = ?",
                (run_key.date.isoformat(), run_key.schedule.value),
            )
            return cursor.rowcount


class StepCache:
    """TTL-aware step cache over a pluggable backend.

    Args:
        backend: Where records live.
        ttl_seconds: Maximum age of a valid entry.
        clock: Time source for ``cached_at`` and expiry checks.
    """

    def __init__(
        self,
        backend: StepCacheBackend,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Optional[Clock] = None,
    ) -> None:
        self.backend = backend
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock or SystemClock()

    def get(self, run_key: RunKey, step: int) -> Optional[Any]:
        """Return the cached payload for ``step``, or None when absent."""
        entry = self.entry(run_key, step)
        return entry.payload if entry is not None else None

    def entry(self, run_key: RunKey, step: int) -> Optional[StepCacheEntry]:
        """
        Return the valid cache entry for ``step``, or None when absent.

        Missing, expired and malformed entries are all reported as absent.

        Args:
            run_key (RunKey): The run namespace.
            step (int): 1-based step number.

        Returns:
            Optional[StepCacheEntry]: The entry with its decoded JSON payload.
        """
        record = self.backend.read(run_key, step)
        if record is None:
            return None

        cached_at_raw, payload_raw = record
        try:
            cached_at = _parse_timestamp(cached_at_raw)
            payload = json.loads(payload_raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"StepCache: discarding malformed step {step} for {run_key}: {e}")
            return None

        age = self.clock.now() - cached_at
        if age > self.ttl:
            logger.info(f"StepCache: step {step} for {run_key} expired ({age} old)")
            return None

        return StepCacheEntry(run_key=run_key, step=step, cached_at=cached_at, payload=payload)

    def set(self, run_key: RunKey, step: int, payload: Any) -> None:
        """
        Store ``payload`` (any JSON-serialisable value) for ``step``, replacing
        any previous entry.
        """
        try:
            payload_raw = json.dumps(payload)
        except (TypeError, ValueError) as e:
            logger.error(f"StepCache: step {step} payload for {run_key} is not serialisable: {e}")
            return
        self.backend.write(run_key, step, self.clock.now().isoformat(), payload_raw)
        logger.info(f"StepCache: cached step {step} for {run_key}")

    def resume_point(self, run_key: RunKey, cacheable_steps: int) -> int:
        """Return the first step in ``1..cacheable_steps`` without a valid entry,
        or ``cacheable_steps + 1`` when every cacheable step is present."""
        for step in range(1, cacheable_steps + 1):
            if self.get(run_key, step) is None:
                return step
        return cacheable_steps + 1

    def clear(self, run_key: RunKey) -> None:
        """Remove every entry for ``run_key``; other run keys are untouched."""
        removed = self.backend.delete(run_key)
        logger.info(f"StepCache: cleared {removed} cached step(s) for {run_key}")


def _parse_timestamp(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
