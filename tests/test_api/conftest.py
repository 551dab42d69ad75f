"""Shared fixtures for API tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from src.alerts.lifecycle import AlertLifecycleService
from src.alerts.service import AlertService
from src.api.app import create_app
from src.api.auth import verify_api_key
from src.api.dependencies import (
    get_alert_service,
    get_lifecycle_service,
    get_redis_client,
    get_runtime,
)


@pytest.fixture
def mock_lifecycle():
    """Mock AlertLifecycleService."""
    lifecycle = AsyncMock(spec=AlertLifecycleService)
    lifecycle.list_alerts = AsyncMock(return_value=[])
    lifecycle.available_triggers = MagicMock(return_value=[
        {"kind": "author", "name": "Author", "fields": ["author"]},
        {"kind": "context", "name": "Context", "fields": ["connector", "context"]},
    ])
    lifecycle.available_notifiers = MagicMock(return_value=[
        {"kind": "none", "name": "No Alert", "fields": []},
    ])
    return lifecycle


@pytest.fixture
def mock_alert_service():
    """Mock AlertService."""
    service = AsyncMock(spec=AlertService)
    service.process_record = AsyncMock(return_value=[])
    return service


@pytest.fixture
def mock_runtime():
    """Mock AlertRuntime with a healthy database."""
    runtime = MagicMock()
    runtime.database.health_check = AsyncMock(return_value=True)
    runtime.triggers.kinds.return_value = ["action", "author", "context", "record"]
    runtime.notifiers.kinds.return_value = ["none", "webhook"]
    return runtime


@pytest.fixture
def mock_redis():
    """Mock Redis client with one healthy consumer group."""
    r = AsyncMock()
    r.ping = AsyncMock(return_value=True)
    r.xlen = AsyncMock(return_value=100)
    r.xinfo_groups = AsyncMock(return_value=[
        {"name": "alert_workers", "consumers": 2, "pel-count": 3, "entries-read": 95, "lag": 5},
    ])
    return r


@pytest.fixture
def client(mock_lifecycle, mock_alert_service, mock_runtime, mock_redis):
    """FastAPI TestClient with dependency overrides."""
    app = create_app()

    async def _redis():
        yield mock_redis

    app.dependency_overrides[verify_api_key] = lambda: "test-key"
    app.dependency_overrides[get_lifecycle_service] = lambda: mock_lifecycle
    app.dependency_overrides[get_alert_service] = lambda: mock_alert_service
    app.dependency_overrides[get_runtime] = lambda: mock_runtime
    app.dependency_overrides[get_redis_client] = _redis

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
