"""Alert definition endpoints: list, create, inspect, toggle and delete."""

import time

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.alerts.errors import AlertNotFoundError
from src.alerts.lifecycle import AlertLifecycleService
from src.alerts.schemas import AlertStatus
from src.api.auth import verify_api_key
from src.api.dependencies import get_lifecycle_service
from src.api.models import (
    AlertCreateRequest,
    AlertItem,
    AlertsResponse,
    AlertStatusRequest,
    ErrorResponse,
    KindItem,
    KindsResponse,
)

logger = structlog.get_logger(__name__)
router = APIRouter()

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Alert not found"}}
_AUTH = {401: {"model": ErrorResponse, "description": "Invalid API key"}}


@router.get(
    "/alerts",
    response_model=AlertsResponse,
    responses={**_AUTH},
    summary="List alert definitions",
    description="List alert definitions, optionally filtered by status or author. Oldest first.",
)
async def list_alerts(
    status_filter: AlertStatus | None = Query(
        default=None,
        alias="status",
        description="Filter by status: enabled, disabled",
    ),
    author_id: str | None = Query(default=None, description="Filter by owning author"),
    limit: int = Query(default=100, ge=1, le=1000, description="Maximum alerts to return"),
    offset: int = Query(default=0, ge=0, description="Offset for pagination"),
    api_key: str = Depends(verify_api_key),
    lifecycle: AlertLifecycleService = Depends(get_lifecycle_service),
) -> AlertsResponse:
    start_time = time.perf_counter()

    alerts = await lifecycle.list_alerts(
        status=status_filter,
        author_id=author_id,
        limit=limit,
        offset=offset,
    )
    items = [AlertItem.from_definition(a) for a in alerts]
    latency_ms = (time.perf_counter() - start_time) * 1000

    logger.info(
        "Alerts listed",
        total=len(items),
        status=status_filter.value if status_filter else None,
        latency_ms=round(latency_ms, 2),
    )
    return AlertsResponse(alerts=items, total=len(items), latency_ms=round(latency_ms, 2))


@router.post(
    "/alerts",
    response_model=AlertItem,
    status_code=status.HTTP_201_CREATED,
    responses={**_AUTH},
    summary="Create an alert definition",
    description=(
        "Create an enabled alert. Unknown trigger or notification kinds are "
        "accepted but the alert stays inert until they are registered."
    ),
)
async def create_alert(
    request: AlertCreateRequest,
    api_key: str = Depends(verify_api_key),
    lifecycle: AlertLifecycleService = Depends(get_lifecycle_service),
) -> AlertItem:
    alert = await lifecycle.create(
        author_id=request.author_id,
        trigger_kind=request.trigger_kind,
        trigger_filters=request.trigger_filters,
        notification_kind=request.notification_kind,
        notification_config=request.notification_config,
    )
    logger.info(
        "Alert created",
        alert_id=alert.alert_id,
        trigger_kind=alert.trigger_kind,
        notification_kind=alert.notification_kind,
    )
    return AlertItem.from_definition(alert)


@router.get(
    "/alerts/kinds",
    response_model=KindsResponse,
    responses={**_AUTH},
    summary="List trigger and notification kinds",
    description="Kinds an alert may reference, with the filter/config keys each one reads.",
)
async def list_kinds(
    api_key: str = Depends(verify_api_key),
    lifecycle: AlertLifecycleService = Depends(get_lifecycle_service),
) -> KindsResponse:
    return KindsResponse(
        triggers=[KindItem(**k) for k in lifecycle.available_triggers()],
        notifiers=[KindItem(**k) for k in lifecycle.available_notifiers()],
    )


@router.get(
    "/alerts/{alert_id}",
    response_model=AlertItem,
    responses={**_AUTH, **_NOT_FOUND},
    summary="Get an alert definition",
)
async def get_alert(
    alert_id: str,
    api_key: str = Depends(verify_api_key),
    lifecycle: AlertLifecycleService = Depends(get_lifecycle_service),
) -> AlertItem:
    try:
        alert = await lifecycle.get(alert_id)
    except AlertNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return AlertItem.from_definition(alert)


@router.patch(
    "/alerts/{alert_id}/status",
    response_model=AlertItem,
    responses={**_AUTH, **_NOT_FOUND},
    summary="Enable or disable an alert",
)
async def set_alert_status(
    alert_id: str,
    request: AlertStatusRequest,
    api_key: str = Depends(verify_api_key),
    lifecycle: AlertLifecycleService = Depends(get_lifecycle_service),
) -> AlertItem:
    try:
        alert = await lifecycle.set_status(alert_id, request.status)
    except AlertNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    logger.info("Alert status changed", alert_id=alert_id, status=alert.status.value)
    return AlertItem.from_definition(alert)


@router.delete(
    "/alerts/{alert_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={**_AUTH, **_NOT_FOUND},
    summary="Delete an alert definition",
    description="Delete an alert. Records it already fired for are not affected.",
)
async def delete_alert(
    alert_id: str,
    api_key: str = Depends(verify_api_key),
    lifecycle: AlertLifecycleService = Depends(get_lifecycle_service),
) -> None:
    try:
        await lifecycle.delete(alert_id)
    except AlertNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    logger.info("Alert deleted", alert_id=alert_id)
