"""Record evaluation endpoint for producers that push over HTTP."""

import time

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from src.alerts.errors import StorageUnavailableError
from src.alerts.service import AlertService
from src.api.auth import verify_api_key
from src.api.dependencies import get_alert_service
from src.api.models import (
    DispatchResultItem,
    ErrorResponse,
    RecordEvaluationResponse,
    RecordRequest,
)

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/records",
    response_model=RecordEvaluationResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid API key"},
        503: {"model": ErrorResponse, "description": "Alert storage unavailable"},
    },
    summary="Evaluate an activity record",
    description=(
        "Match the record against every enabled alert and dispatch the matches. "
        "Re-posting a record never re-sends a notification that already went out."
    ),
)
async def evaluate_record(
    request: RecordRequest,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> RecordEvaluationResponse:
    start_time = time.perf_counter()
    record = request.to_record()

    try:
        results = await service.process_record(record, source="api")
    except StorageUnavailableError as e:
        logger.critical("Alert storage unavailable", record_id=record.record_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Alert storage unavailable; retry the record later",
        )

    latency_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        "Record evaluated",
        record_id=record.record_id,
        matched=len(results),
        latency_ms=round(latency_ms, 2),
    )
    return RecordEvaluationResponse(
        record_id=record.record_id,
        matched=len(results),
        results=[DispatchResultItem.from_result(r) for r in results],
        latency_ms=round(latency_ms, 2),
    )
