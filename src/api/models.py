"""
Request and response models for the activity-alerts API.
"""

import datetime as dt
from typing import Any

from pydantic import BaseModel, Field

from src.alerts.schemas import AlertDefinition, AlertStatus, DispatchResult, Record


class ErrorResponse(BaseModel):
    """Response model for errors."""

    detail: str = Field(
        ...,
        description="Error message",
    )
    error_type: str = Field(
        default="error",
        description="Error type",
    )


# Health


class ComponentHealth(BaseModel):
    """Health of one infrastructure dependency."""

    status: str = Field(..., description="healthy or unhealthy")
    latency_ms: float | None = Field(default=None, description="Check latency in milliseconds")
    details: dict[str, Any] = Field(default_factory=dict, description="Error details, if any")


class QueueMetrics(BaseModel):
    """Backlog of the record stream."""

    pending: int = Field(..., description="Records not yet evaluated (-1 if unknown)")
    processed: int = Field(..., description="Records read by the consumer group")


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(
        ...,
        description="Overall service status: healthy, degraded, or unhealthy",
    )
    components: dict[str, ComponentHealth] = Field(
        default_factory=dict,
        description="Per-dependency health",
    )
    queue_depths: dict[str, QueueMetrics] = Field(
        default_factory=dict,
        description="Record stream backlog",
    )
    trigger_kinds: list[str] = Field(default_factory=list, description="Registered trigger kinds")
    notifier_kinds: list[str] = Field(default_factory=list, description="Registered notifier kinds")
    version: str = Field(..., description="Service version")


# Alert definitions


class AlertCreateRequest(BaseModel):
    """Request model for creating an alert definition."""

    author_id: str = Field(..., min_length=1, description="User creating the alert")
    trigger_kind: str = Field(..., min_length=1, description="Registered trigger kind, e.g. 'context'")
    trigger_filters: dict[str, Any] = Field(
        default_factory=dict,
        description=(
            "Filter key -> accepted values (author, connector, context, action). "
            "Empty means any. 'connector_context': 'posts-post' is accepted as shorthand."
        ),
    )
    notification_kind: str = Field(..., min_length=1, description="Registered notifier kind, e.g. 'email'")
    notification_config: dict[str, Any] = Field(
        default_factory=dict,
        description="Notifier settings, e.g. {'recipient': 'ops@example.com'}",
    )


class AlertStatusRequest(BaseModel):
    """Request model for enabling or disabling an alert."""

    status: AlertStatus = Field(..., description="enabled or disabled")


class AlertItem(BaseModel):
    """Single alert definition."""

    alert_id: str = Field(..., description="Unique alert identifier")
    author_id: str = Field(..., description="User who created the alert")
    status: str = Field(..., description="enabled or disabled")
    trigger_kind: str = Field(..., description="Trigger kind evaluating the filters")
    trigger_filters: dict[str, Any] = Field(default_factory=dict, description="Trigger filters")
    notification_kind: str = Field(..., description="Notifier invoked on match")
    notification_config: dict[str, Any] = Field(default_factory=dict, description="Notifier settings")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")

    @classmethod
    def from_definition(cls, alert: AlertDefinition) -> "AlertItem":
        return cls(**alert.to_dict())


class AlertsResponse(BaseModel):
    """Response model for listing alerts."""

    alerts: list[AlertItem] = Field(..., description="List of alert definitions")
    total: int = Field(..., description="Number of alerts returned")
    latency_ms: float = Field(..., description="Processing latency in milliseconds")


class KindItem(BaseModel):
    """A registered trigger or notifier kind."""

    kind: str = Field(..., description="Identifier stored on alert definitions")
    name: str = Field(..., description="Display name")
    fields: list[str] = Field(default_factory=list, description="Filter or config keys it reads")


class KindsResponse(BaseModel):
    """Available trigger and notification kinds."""

    triggers: list[KindItem] = Field(..., description="Registered trigger kinds")
    notifiers: list[KindItem] = Field(..., description="Registered notifier kinds")


# Records


class RecordRequest(BaseModel):
    """An activity record to evaluate."""

    record_id: str = Field(..., min_length=1, description="Unique record identifier")
    author_id: str = Field(..., description="User who performed the action")
    connector: str = Field(..., description="Subsystem, e.g. 'posts'")
    context: str = Field(..., description="Object type, e.g. 'post'")
    action: str = Field(..., description="What happened, e.g. 'updated'")
    created: dt.datetime | None = Field(default=None, description="When it happened (default: now)")
    summary: str = Field(default="", description="Human-readable description")
    object_id: str | None = Field(default=None, description="Affected object identifier")
    meta: dict[str, Any] = Field(default_factory=dict, description="Extra producer fields")

    def to_record(self) -> Record:
        return Record.from_dict(self.model_dump())


class DispatchResultItem(BaseModel):
    """Outcome of one matched alert."""

    alert_id: str
    record_id: str
    notifier_kind: str
    outcome: str = Field(..., description="delivered, failed, timed_out, duplicate, notifier_unavailable")
    detail: str | None = None
    latency_ms: float = 0.0

    @classmethod
    def from_result(cls, result: DispatchResult) -> "DispatchResultItem":
        return cls(**result.to_dict())


class RecordEvaluationResponse(BaseModel):
    """Response model for evaluating a record."""

    record_id: str = Field(..., description="Evaluated record")
    matched: int = Field(..., description="Alert definitions matched")
    results: list[DispatchResultItem] = Field(..., description="Per-alert dispatch outcomes")
    latency_ms: float = Field(..., description="Processing latency in milliseconds")
