"""Repositories for alert definitions and record highlights.

Follows the asyncpg ``Database`` pattern: SQL lives here, callers get
schema objects back. Definitions are read fresh on every evaluation, so
there is no caching layer.
"""

import json
import logging
from typing import Any

from src.alerts.schemas import AlertDefinition, AlertStatus
from src.storage.database import Database

logger = logging.getLogger(__name__)


class AlertRepository:
    """Persistence for ``AlertDefinition`` rows in ``alert_definitions``.

    Trigger and notification columns are written once at insert; the only
    update is a status change.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the alert_definitions table if it doesn't exist."""
        sql = """
        CREATE TABLE IF NOT EXISTS alert_definitions (
            alert_id TEXT PRIMARY KEY,
            author_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'enabled'
                CHECK (status IN ('enabled', 'disabled')),
            trigger_kind TEXT NOT NULL,
            trigger_filters JSONB NOT NULL DEFAULT '{}'::jsonb,
            notification_kind TEXT NOT NULL,
            notification_config JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_alert_definitions_status
            ON alert_definitions(status);
        CREATE INDEX IF NOT EXISTS idx_alert_definitions_author
            ON alert_definitions(author_id);
        """
        await self._db.execute(sql)
        logger.info("Alert definition table ready")

    async def create(self, alert: AlertDefinition) -> AlertDefinition:
        """Insert a new definition.

        Args:
            alert: Definition to persist.

        Returns:
            The stored definition as read back from the database.
        """
        sql = """
            INSERT INTO alert_definitions (
                alert_id, author_id, status, trigger_kind, trigger_filters,
                notification_kind, notification_config, created_at
            ) VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7::jsonb, $8)
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            alert.alert_id,
            alert.author_id,
            alert.status.value,
            alert.trigger_kind,
            json.dumps(alert.trigger_filters),
            alert.notification_kind,
            json.dumps(alert.notification_config),
            alert.created_at,
        )
        return _row_to_alert(row)

    async def get_by_id(self, alert_id: str) -> AlertDefinition | None:
        sql = "SELECT * FROM alert_definitions WHERE alert_id = $1"
        row = await self._db.fetchrow(sql, alert_id)
        if row is None:
            return None
        return _row_to_alert(row)

    async def find(
        self,
        *,
        status: AlertStatus | str | None = None,
        author_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AlertDefinition]:
        """List definitions, oldest first.

        Args:
            status: Only definitions with this status.
            author_id: Only definitions owned by this author.
            limit: Maximum rows; None means all.
            offset: Rows to skip.

        Returns:
            Definitions ordered by created_at, then alert_id.
        """
        conditions: list[str] = []
        params: list[Any] = []
        param_idx = 1

        if status is not None:
            conditions.append(f"status = ${param_idx}")
            params.append(AlertStatus(status).value)
            param_idx += 1

        if author_id is not None:
            conditions.append(f"author_id = ${param_idx}")
            params.append(author_id)
            param_idx += 1

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        limit_clause = ""
        if limit is not None:
            limit_clause = f"LIMIT ${param_idx} OFFSET ${param_idx + 1}"
            params.extend([limit, offset])

        sql = f"""
            SELECT * FROM alert_definitions
            {where_clause}
            ORDER BY created_at, alert_id
            {limit_clause}
        """
        rows = await self._db.fetch(sql, *params)
        return [_row_to_alert(row) for row in rows]

    async def list_enabled(self) -> list[AlertDefinition]:
        """All enabled definitions; the input to every record evaluation."""
        return await self.find(status=AlertStatus.ENABLED)

    async def set_status(
        self,
        alert_id: str,
        status: AlertStatus | str,
    ) -> AlertDefinition | None:
        """Change a definition's status.

        Returns:
            The updated definition, or None if the id is unknown.
        """
        sql = """
            UPDATE alert_definitions SET status = $2
            WHERE alert_id = $1
            RETURNING *
        """
        row = await self._db.fetchrow(sql, alert_id, AlertStatus(status).value)
        if row is None:
            return None
        return _row_to_alert(row)

    async def delete(self, alert_id: str) -> bool:
        """Delete a definition. Its dispatch markers are kept.

        Returns:
            True if a row was deleted.
        """
        sql = "DELETE FROM alert_definitions WHERE alert_id = $1 RETURNING alert_id"
        result = await self._db.fetchval(sql, alert_id)
        return result is not None


class HighlightRepository:
    """Record highlight colours written by the highlight notifier.

    One row per record; a later highlight replaces the colour.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        sql = """
        CREATE TABLE IF NOT EXISTS record_highlights (
            record_id TEXT PRIMARY KEY,
            color TEXT NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        """
        await self._db.execute(sql)
        logger.info("Record highlight table ready")

    async def highlight(self, record_id: str, color: str) -> None:
        sql = """
            INSERT INTO record_highlights (record_id, color)
            VALUES ($1, $2)
            ON CONFLICT (record_id)
            DO UPDATE SET color = EXCLUDED.color, updated_at = NOW()
        """
        await self._db.execute(sql, record_id, color)

    async def get(self, record_id: str) -> str | None:
        """Colour for a record, or None if it isn't highlighted."""
        sql = "SELECT color FROM record_highlights WHERE record_id = $1"
        return await self._db.fetchval(sql, record_id)


def _row_to_alert(row: Any) -> AlertDefinition:
    """Convert an asyncpg Record to an AlertDefinition.

    JSONB columns arrive as strings unless a codec is installed;
    ``from_dict`` accepts both.
    """
    return AlertDefinition.from_dict(dict(row))
