"""Schema definitions for activity records, alert definitions, and dispatch results.

``AlertDefinition`` maps 1:1 to the ``alert_definitions`` database table.
``Record`` is the read-only activity event handed to us by the ingest side;
nothing in the pipeline mutates it.
"""

import enum
import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any


class AlertStatus(str, enum.Enum):
    """Lifecycle status of an alert definition."""

    ENABLED = "enabled"
    DISABLED = "disabled"


class DispatchOutcome(str, enum.Enum):
    """Outcome of a single (alert, record) dispatch attempt."""

    DELIVERED = "delivered"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    DUPLICATE = "duplicate"
    NOTIFIER_UNAVAILABLE = "notifier_unavailable"


VALID_STATUSES: frozenset[str] = frozenset(s.value for s in AlertStatus)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Record:
    """A single activity event from the audit log.

    Attributes:
        record_id: Unique identifier assigned by the producer.
        author_id: User who performed the action.
        connector: Subsystem that generated the record (e.g. ``posts``).
        context: Object type within the connector (e.g. ``post``, ``page``).
        action: What happened (e.g. ``updated``, ``deleted``).
        created: When the activity happened.
        summary: Human-readable description used by notifiers.
        object_id: Identifier of the affected object, if any.
        meta: Extra producer-specific fields.
    """

    record_id: str
    author_id: str
    connector: str
    context: str
    action: str
    created: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    summary: str = ""
    object_id: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "record_id": self.record_id,
            "author_id": self.author_id,
            "connector": self.connector,
            "context": self.context,
            "action": self.action,
            "created": self.created.isoformat(),
            "summary": self.summary,
            "object_id": self.object_id,
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        """Create a Record from a dictionary.

        Identifier fields are coerced to strings since producers commonly
        emit integer ids.

        Args:
            data: Dictionary with record fields.

        Returns:
            Record instance.

        Raises:
            KeyError: If a required field is missing.
        """
        meta = data.get("meta") or {}
        if isinstance(meta, str):
            meta = json.loads(meta)

        object_id = data.get("object_id")

        return cls(
            record_id=str(data["record_id"]),
            author_id=str(data["author_id"]),
            connector=str(data["connector"]),
            context=str(data["context"]),
            action=str(data["action"]),
            created=_parse_datetime(data.get("created")),
            summary=data.get("summary") or "",
            object_id=str(object_id) if object_id is not None else None,
            meta=meta,
        )


@dataclass(frozen=True)
class AlertDefinition:
    """A persisted alert rule from the alert_definitions table.

    Trigger and notification fields are immutable after creation; changing
    them means deleting the definition and creating a new one. Only
    ``status`` changes, via ``with_status``.

    Attributes:
        alert_id: UUID4 identifier.
        author_id: User who created the rule.
        trigger_kind: Registered trigger kind evaluating the filters.
        trigger_filters: Filter key -> accepted values. Empty means any.
        notification_kind: Registered notifier kind to invoke on match.
        notification_config: Notifier-specific settings.
        status: enabled or disabled.
        created_at: When the rule was created.
    """

    author_id: str
    trigger_kind: str
    notification_kind: str
    trigger_filters: dict[str, Any] = field(default_factory=dict)
    notification_config: dict[str, Any] = field(default_factory=dict)
    alert_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: AlertStatus = AlertStatus.ENABLED
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        if not isinstance(self.status, AlertStatus):
            try:
                object.__setattr__(self, "status", AlertStatus(self.status))
            except ValueError:
                raise ValueError(
                    f"Invalid status {self.status!r}. "
                    f"Must be one of: {sorted(VALID_STATUSES)}"
                ) from None

    @property
    def is_enabled(self) -> bool:
        return self.status is AlertStatus.ENABLED

    def with_status(self, status: AlertStatus) -> "AlertDefinition":
        """Return a copy with a new status."""
        return replace(self, status=AlertStatus(status))

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "alert_id": self.alert_id,
            "author_id": self.author_id,
            "status": self.status.value,
            "trigger_kind": self.trigger_kind,
            "trigger_filters": self.trigger_filters,
            "notification_kind": self.notification_kind,
            "notification_config": self.notification_config,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertDefinition":
        """Create an AlertDefinition from a dictionary.

        Args:
            data: Dictionary with alert definition fields.

        Returns:
            AlertDefinition instance.
        """
        trigger_filters = data.get("trigger_filters") or {}
        if isinstance(trigger_filters, str):
            trigger_filters = json.loads(trigger_filters)

        notification_config = data.get("notification_config") or {}
        if isinstance(notification_config, str):
            notification_config = json.loads(notification_config)

        return cls(
            alert_id=data.get("alert_id", str(uuid.uuid4())),
            author_id=str(data["author_id"]),
            status=data.get("status", AlertStatus.ENABLED),
            trigger_kind=data["trigger_kind"],
            trigger_filters=trigger_filters,
            notification_kind=data["notification_kind"],
            notification_config=notification_config,
            created_at=_parse_datetime(data.get("created_at")),
        )


@dataclass(frozen=True)
class DispatchResult:
    """What happened when one alert was dispatched for one record."""

    alert_id: str
    record_id: str
    notifier_kind: str
    outcome: DispatchOutcome
    detail: str | None = None
    latency_ms: float = 0.0

    @property
    def attempted(self) -> bool:
        """Whether the notifier channel was actually invoked."""
        return self.outcome in (
            DispatchOutcome.DELIVERED,
            DispatchOutcome.FAILED,
            DispatchOutcome.TIMED_OUT,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "record_id": self.record_id,
            "notifier_kind": self.notifier_kind,
            "outcome": self.outcome.value,
            "detail": self.detail,
            "latency_ms": round(self.latency_ms, 2),
        }
