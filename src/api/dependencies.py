"""
Dependency injection for FastAPI endpoints.

The alert runtime (database pool, registries, services) is created on the
first request that needs it and shared for the life of the process. Tests
replace these functions through ``app.dependency_overrides``.
"""

import asyncio
from typing import AsyncGenerator

import redis.asyncio as redis

from src.alerts.bootstrap import AlertRuntime, open_runtime
from src.alerts.lifecycle import AlertLifecycleService
from src.alerts.service import AlertService
from src.config.settings import get_settings
from src.observability.metrics import get_metrics
from src.storage.database import Database

_runtime: AlertRuntime | None = None
_runtime_lock = asyncio.Lock()
_redis_client: redis.Redis | None = None


async def get_runtime() -> AlertRuntime:
    """Shared alert runtime, connecting on first use."""
    global _runtime

    if _runtime is None:
        async with _runtime_lock:
            if _runtime is None:
                _runtime = await open_runtime(metrics=get_metrics())

    return _runtime


async def get_lifecycle_service() -> AlertLifecycleService:
    return (await get_runtime()).lifecycle


async def get_alert_service() -> AlertService:
    return (await get_runtime()).service


async def get_database() -> Database:
    return (await get_runtime()).database


async def get_redis_client() -> AsyncGenerator[redis.Redis, None]:
    """Redis client for health checks and stream inspection."""
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.from_url(
            str(get_settings().redis_url),
            encoding="utf-8",
            decode_responses=True,
        )

    yield _redis_client


async def cleanup_dependencies() -> None:
    """Close shared connections on shutdown."""
    global _runtime, _redis_client

    if _runtime is not None:
        await _runtime.close()
        _runtime = None

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
