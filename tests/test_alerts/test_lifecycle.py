"""Tests for AlertLifecycleService with a mocked repository."""

from unittest.mock import AsyncMock

import pytest

from src.alerts.errors import AlertNotFoundError
from src.alerts.lifecycle import AlertLifecycleService
from src.alerts.notifiers import NoneNotifier
from src.alerts.registry import NotifierRegistry, TriggerRegistry
from src.alerts.repository import AlertRepository
from src.alerts.schemas import AlertStatus
from src.alerts.triggers import builtin_triggers


@pytest.fixture
def mock_repo():
    repo = AsyncMock(spec=AlertRepository)
    repo.create.side_effect = lambda alert: alert
    repo.find.return_value = []
    return repo


@pytest.fixture
def lifecycle(mock_repo):
    triggers = TriggerRegistry()
    triggers.register_all(builtin_triggers())
    notifiers = NotifierRegistry()
    notifiers.register_all([NoneNotifier()])
    return AlertLifecycleService(mock_repo, triggers, notifiers)


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_enabled(self, lifecycle, mock_repo):
        alert = await lifecycle.create(
            author_id=3,
            trigger_kind="action",
            trigger_filters={"action": ["deleted"]},
            notification_kind="none",
            notification_config=None,
        )

        assert alert.is_enabled
        assert alert.author_id == "3"
        assert alert.notification_config == {}
        mock_repo.create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expands_connector_context(self, lifecycle):
        alert = await lifecycle.create(
            author_id="1",
            trigger_kind="context",
            trigger_filters={"connector_context": "posts-page"},
            notification_kind="none",
            notification_config={},
        )
        assert alert.trigger_filters == {"connector": ["posts"], "context": ["page"]}

    @pytest.mark.asyncio
    async def test_unknown_kinds_accepted(self, lifecycle, caplog):
        alert = await lifecycle.create(
            author_id="1",
            trigger_kind="geo",
            trigger_filters={},
            notification_kind="sms",
            notification_config={},
        )
        assert alert.trigger_kind == "geo"
        assert "inert" in caplog.text


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_missing(self, lifecycle, mock_repo):
        mock_repo.get_by_id.return_value = None
        with pytest.raises(AlertNotFoundError):
            await lifecycle.get("nope")

    @pytest.mark.asyncio
    async def test_get(self, lifecycle, mock_repo, alert_factory):
        mock_repo.get_by_id.return_value = alert_factory()
        assert (await lifecycle.get("alert-1")).alert_id == "alert-1"

    @pytest.mark.asyncio
    async def test_list_passes_filters(self, lifecycle, mock_repo):
        await lifecycle.list_alerts(status="enabled", author_id="7", limit=5, offset=10)
        mock_repo.find.assert_awaited_once_with(
            status="enabled", author_id="7", limit=5, offset=10,
        )


class TestStatus:
    @pytest.mark.asyncio
    async def test_disable(self, lifecycle, mock_repo, alert_factory):
        mock_repo.set_status.return_value = alert_factory(status="disabled")
        alert = await lifecycle.disable("alert-1")
        assert not alert.is_enabled
        mock_repo.set_status.assert_awaited_once_with("alert-1", AlertStatus.DISABLED)

    @pytest.mark.asyncio
    async def test_enable(self, lifecycle, mock_repo, alert_factory):
        mock_repo.set_status.return_value = alert_factory()
        await lifecycle.enable("alert-1")
        mock_repo.set_status.assert_awaited_once_with("alert-1", AlertStatus.ENABLED)

    @pytest.mark.asyncio
    async def test_missing(self, lifecycle, mock_repo):
        mock_repo.set_status.return_value = None
        with pytest.raises(AlertNotFoundError):
            await lifecycle.enable("nope")

    @pytest.mark.asyncio
    async def test_invalid_status(self, lifecycle):
        with pytest.raises(ValueError):
            await lifecycle.set_status("alert-1", "paused")


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete(self, lifecycle, mock_repo):
        mock_repo.delete.return_value = True
        await lifecycle.delete("alert-1")
        mock_repo.delete.assert_awaited_once_with("alert-1")

    @pytest.mark.asyncio
    async def test_delete_missing(self, lifecycle, mock_repo):
        mock_repo.delete.return_value = False
        with pytest.raises(AlertNotFoundError):
            await lifecycle.delete("nope")


def test_available_kinds(lifecycle):
    assert [k["kind"] for k in lifecycle.available_triggers()] == ["action", "author", "context", "record"]
    assert lifecycle.available_notifiers() == [{"kind": "none", "name": "No Alert", "fields": []}]
