"""Dispatch markers preventing an alert from firing twice for one record.

A marker is the durable fact "(alert_id, record_id) has dispatched". It is
never deleted. ``mark_fired`` is an atomic claim: of any number of
concurrent callers for the same pair, exactly one gets True. The
dispatcher claims immediately before invoking the notifier, so concurrent
evaluations of the same record produce at most one attempt. A crash between
the claim and the notify call loses that notification; the pipeline prefers
at-most-once over exactly-once.

Backends:
- PostgresDedupTracker: composite primary key + ON CONFLICT DO NOTHING
- RedisDedupTracker: SET NX without expiry
- InMemoryDedupTracker: process-local, for tests and single-process runs

Backend errors surface as ``StorageUnavailableError``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from src.alerts.errors import StorageUnavailableError
from src.storage.database import Database

logger = logging.getLogger(__name__)


class DedupTracker(ABC):
    """Abstract base for dispatch marker storage."""

    @abstractmethod
    async def already_fired(self, alert_id: str, record_id: str) -> bool:
        """Check whether a marker exists for the pair."""

    @abstractmethod
    async def mark_fired(self, alert_id: str, record_id: str) -> bool:
        """Atomically create the marker.

        Returns:
            True if this call created the marker, False if it already existed.
        """


class InMemoryDedupTracker(DedupTracker):
    """Set-backed tracker.

    Check-and-add happens without an intervening await, so it is atomic
    within one event loop.
    """

    def __init__(self) -> None:
        self._fired: set[tuple[str, str]] = set()

    async def already_fired(self, alert_id: str, record_id: str) -> bool:
        return (alert_id, record_id) in self._fired

    async def mark_fired(self, alert_id: str, record_id: str) -> bool:
        key = (alert_id, record_id)
        if key in self._fired:
            return False
        self._fired.add(key)
        return True

    def __len__(self) -> int:
        return len(self._fired)


class RedisDedupTracker(DedupTracker):
    """Redis SET NX tracker.

    Key format: ``{prefix}:{alert_id}:{record_id}``. Keys carry no TTL
    because markers are permanent.
    """

    def __init__(self, redis_client: Any, key_prefix: str = "alert:fired") -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix

    def _key(self, alert_id: str, record_id: str) -> str:
        return f"{self._key_prefix}:{alert_id}:{record_id}"

    async def already_fired(self, alert_id: str, record_id: str) -> bool:
        try:
            return bool(await self._redis.exists(self._key(alert_id, record_id)))
        except Exception as e:
            raise StorageUnavailableError(f"Redis marker lookup failed: {e}") from e

    async def mark_fired(self, alert_id: str, record_id: str) -> bool:
        try:
            # SET NX returns True if the key was set, None if it already existed.
            was_set = await self._redis.set(self._key(alert_id, record_id), "1", nx=True)
        except Exception as e:
            raise StorageUnavailableError(f"Redis marker write failed: {e}") from e
        return bool(was_set)


class PostgresDedupTracker(DedupTracker):
    """Markers in the ``alert_dispatch_markers`` table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the marker table if it doesn't exist."""
        sql = """
        CREATE TABLE IF NOT EXISTS alert_dispatch_markers (
            alert_id TEXT NOT NULL,
            record_id TEXT NOT NULL,
            fired_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (alert_id, record_id)
        );

        CREATE INDEX IF NOT EXISTS idx_alert_dispatch_markers_record
            ON alert_dispatch_markers(record_id);
        """
        await self._db.execute(sql)
        logger.info("Alert dispatch marker table ready")

    async def already_fired(self, alert_id: str, record_id: str) -> bool:
        sql = """
            SELECT 1 FROM alert_dispatch_markers
            WHERE alert_id = $1 AND record_id = $2
        """
        try:
            result = await self._db.fetchval(sql, alert_id, record_id)
        except Exception as e:
            raise StorageUnavailableError(f"Marker lookup failed: {e}") from e
        return result is not None

    async def mark_fired(self, alert_id: str, record_id: str) -> bool:
        sql = """
            INSERT INTO alert_dispatch_markers (alert_id, record_id)
            VALUES ($1, $2)
            ON CONFLICT (alert_id, record_id) DO NOTHING
            RETURNING alert_id
        """
        try:
            result = await self._db.fetchval(sql, alert_id, record_id)
        except Exception as e:
            raise StorageUnavailableError(f"Marker write failed: {e}") from e
        return result is not None
