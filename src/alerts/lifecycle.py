"""Alert lifecycle service: create, toggle, delete and inspect definitions.

The admin UI and the CLI are plain clients of this service. A definition's
trigger and notification settings never change after creation; edits are
delete-and-recreate.
"""

import logging
from collections.abc import Mapping
from typing import Any

from src.alerts.errors import AlertNotFoundError
from src.alerts.registry import NotifierRegistry, TriggerRegistry
from src.alerts.repository import AlertRepository
from src.alerts.schemas import AlertDefinition, AlertStatus
from src.alerts.triggers import expand_connector_context

logger = logging.getLogger(__name__)


class AlertLifecycleService:
    """CRUD over alert definitions plus the kind listings the UI needs."""

    def __init__(
        self,
        store: AlertRepository,
        triggers: TriggerRegistry,
        notifiers: NotifierRegistry,
    ) -> None:
        self._store = store
        self._triggers = triggers
        self._notifiers = notifiers

    async def create(
        self,
        author_id: str,
        trigger_kind: str,
        trigger_filters: Mapping[str, Any] | None,
        notification_kind: str,
        notification_config: Mapping[str, Any] | None,
    ) -> AlertDefinition:
        """Create an enabled definition.

        Unknown trigger or notification kinds are accepted; the definition
        stays inert until the kind is registered.

        Args:
            author_id: Owner of the definition.
            trigger_kind: Registered trigger kind.
            trigger_filters: Filter key -> accepted values. A
                ``connector_context`` shorthand is expanded here.
            notification_kind: Registered notifier kind.
            notification_config: Notifier-specific settings.

        Returns:
            The stored definition.
        """
        if trigger_kind not in self._triggers:
            logger.warning(
                "Alert created with unknown trigger kind %r; it will stay inert",
                trigger_kind,
            )
        if notification_kind not in self._notifiers:
            logger.warning(
                "Alert created with unknown notification kind %r; it will stay inert",
                notification_kind,
            )

        alert = AlertDefinition(
            author_id=str(author_id),
            trigger_kind=trigger_kind,
            trigger_filters=expand_connector_context(trigger_filters or {}),
            notification_kind=notification_kind,
            notification_config=dict(notification_config or {}),
        )
        created = await self._store.create(alert)
        logger.info(
            "Alert %s created by %s (%s -> %s)",
            created.alert_id, created.author_id, trigger_kind, notification_kind,
        )
        return created

    async def get(self, alert_id: str) -> AlertDefinition:
        alert = await self._store.get_by_id(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    async def list_alerts(
        self,
        status: AlertStatus | str | None = None,
        author_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AlertDefinition]:
        return await self._store.find(
            status=status, author_id=author_id, limit=limit, offset=offset,
        )

    async def set_status(
        self,
        alert_id: str,
        status: AlertStatus | str,
    ) -> AlertDefinition:
        """Enable or disable a definition.

        Raises:
            AlertNotFoundError: If the id is unknown.
            ValueError: If ``status`` is not a valid status.
        """
        status = AlertStatus(status)
        updated = await self._store.set_status(alert_id, status)
        if updated is None:
            raise AlertNotFoundError(alert_id)
        logger.info("Alert %s is now %s", alert_id, status.value)
        return updated

    async def enable(self, alert_id: str) -> AlertDefinition:
        return await self.set_status(alert_id, AlertStatus.ENABLED)

    async def disable(self, alert_id: str) -> AlertDefinition:
        return await self.set_status(alert_id, AlertStatus.DISABLED)

    async def delete(self, alert_id: str) -> None:
        """Delete a definition; its dispatch markers are kept.

        Raises:
            AlertNotFoundError: If the id is unknown.
        """
        if not await self._store.delete(alert_id):
            raise AlertNotFoundError(alert_id)
        logger.info("Alert %s deleted", alert_id)

    def available_triggers(self) -> list[dict[str, Any]]:
        return self._triggers.describe()

    def available_notifiers(self) -> list[dict[str, Any]]:
        return self._notifiers.describe()
