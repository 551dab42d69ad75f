"""
Health check endpoint covering PostgreSQL, Redis and the record stream.
"""

import time

import structlog
from fastapi import APIRouter, Depends

from src.alerts.bootstrap import AlertRuntime
from src.api.dependencies import get_redis_client, get_runtime
from src.api.models import ComponentHealth, HealthResponse, QueueMetrics
from src.config.settings import SERVICE_VERSION, get_settings

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _timed_check(check) -> ComponentHealth:
    """Run an awaitable returning bool and time it."""
    start = time.perf_counter()
    try:
        healthy = await check
        details = {}
    except Exception as e:
        healthy = False
        details = {"error": str(e)}
    latency_ms = (time.perf_counter() - start) * 1000
    return ComponentHealth(
        status="healthy" if healthy else "unhealthy",
        latency_ms=round(latency_ms, 2),
        details=details,
    )


async def _ping(redis_client) -> bool:
    return bool(await redis_client.ping())


async def _record_stream_depth(redis_client) -> QueueMetrics:
    """Backlog of the record stream for the alert worker group."""
    settings = get_settings()
    stream = settings.record_stream_name
    try:
        stream_len = await redis_client.xlen(stream)
        try:
            groups = await redis_client.xinfo_groups(stream)
        except Exception:
            return QueueMetrics(pending=stream_len, processed=0)

        group = next(
            (g for g in groups if g.get("name") == settings.record_consumer_group),
            None,
        )
        if group is None:
            return QueueMetrics(pending=stream_len, processed=0)

        in_flight = group.get("pel-count", 0) or 0
        lag = group.get("lag")
        entries_read = group.get("entries-read")

        # lag / entries-read need Redis 7+
        pending = lag + in_flight if lag is not None else stream_len
        processed = max(0, entries_read - in_flight) if entries_read is not None else 0
        return QueueMetrics(pending=pending, processed=processed)
    except Exception:
        return QueueMetrics(pending=-1, processed=-1)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Check the health of the service and its dependencies.",
)
async def health_check(
    runtime: AlertRuntime = Depends(get_runtime),
    redis_client=Depends(get_redis_client),
) -> HealthResponse:
    """
    Status logic:
    - unhealthy: database is down (no definitions, no markers)
    - degraded: Redis is down (no stream ingest; HTTP ingest still works)
    - healthy: all components operational
    """
    components = {
        "database": await _timed_check(runtime.database.health_check()),
        "redis": await _timed_check(_ping(redis_client)),
    }

    queue_depths: dict[str, QueueMetrics] = {}
    if components["redis"].status == "healthy":
        queue_depths[get_settings().record_stream_name] = await _record_stream_depth(redis_client)

    if components["database"].status == "unhealthy":
        status = "unhealthy"
    elif components["redis"].status == "unhealthy":
        status = "degraded"
    else:
        status = "healthy"

    if status != "healthy":
        logger.warning("Health check not healthy", status=status)

    return HealthResponse(
        status=status,
        components=components,
        queue_depths=queue_depths,
        trigger_kinds=runtime.triggers.kinds(),
        notifier_kinds=runtime.notifiers.kinds(),
        version=SERVICE_VERSION,
    )
