"""Tests for AlertWorker message handling and lifecycle."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.alerts.errors import StorageUnavailableError
from src.alerts.schemas import DispatchOutcome, DispatchResult
from src.queues.records import RecordMessage
from src.services.alert_worker import AlertWorker


# ── Fixtures ──────────────────────────────────────────────


@pytest.fixture
def mock_queue():
    q = AsyncMock()
    q.ack = AsyncMock()
    q.nack = AsyncMock()
    q.connect = AsyncMock()
    q.close = AsyncMock()
    q.health_check = AsyncMock(return_value=True)
    return q


@pytest.fixture
def mock_service():
    service = AsyncMock()
    service.process_record = AsyncMock(return_value=[])
    return service


@pytest.fixture
def metrics():
    return MagicMock()


@pytest.fixture
def worker(mock_queue, mock_service, metrics):
    w = AlertWorker(queue=mock_queue, service=mock_service, metrics=metrics)
    w._backoff = MagicMock()
    w._backoff.sleep = AsyncMock(return_value=1.0)
    return w


@pytest.fixture
def message(sample_record):
    return RecordMessage(message_id="msg-1", record=sample_record)


# ── handle_message ────────────────────────────────────────


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_success_acks(self, worker, mock_queue, mock_service, message):
        mock_service.process_record.return_value = [
            DispatchResult("a1", "1001", "email", DispatchOutcome.DELIVERED),
        ]

        assert await worker.handle_message(message) is True

        mock_service.process_record.assert_awaited_once_with(message.record, source="stream")
        mock_queue.ack.assert_awaited_once_with("msg-1")
        mock_queue.nack.assert_not_called()
        worker._backoff.reset.assert_called_once()
        assert worker.stats["processed"] == 1

    @pytest.mark.asyncio
    async def test_storage_unavailable_leaves_pending(self, worker, mock_queue, mock_service, metrics, message):
        mock_service.process_record.side_effect = StorageUnavailableError("db down")

        assert await worker.handle_message(message) is False

        mock_queue.ack.assert_not_called()
        mock_queue.nack.assert_not_called()
        worker._backoff.sleep.assert_awaited_once()
        metrics.record_evaluation_error.assert_called_once_with("storage_unavailable")
        assert worker.stats["deferred"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_dead_letters(self, worker, mock_queue, mock_service, metrics, message):
        mock_service.process_record.side_effect = RuntimeError("bug")

        assert await worker.handle_message(message) is True

        mock_queue.nack.assert_awaited_once()
        assert mock_queue.nack.call_args[0][0] == "msg-1"
        assert "RuntimeError" in mock_queue.nack.call_args[0][1]
        metrics.record_evaluation_error.assert_called_once_with("unexpected")
        assert worker.stats["failed"] == 1

    @pytest.mark.asyncio
    async def test_context_cleared(self, worker, message):
        with patch("src.services.alert_worker.clear_context") as mock_clear:
            await worker.handle_message(message)
        mock_clear.assert_called_once()


# ── Lifecycle ─────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_processes_until_stopped(self, worker, mock_queue, sample_record):
        messages = [
            RecordMessage(message_id="msg-1", record=sample_record),
            RecordMessage(message_id="msg-2", record=sample_record),
        ]

        async def consume(count, block_ms):
            for m in messages:
                yield m

        mock_queue.consume = consume

        await worker.start()

        assert worker.stats["processed"] == 2
        assert not worker.is_running
        mock_queue.connect.assert_awaited_once()
        mock_queue.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_breaks_loop(self, worker, mock_queue, sample_record):
        async def consume(count, block_ms):
            yield RecordMessage(message_id="msg-1", record=sample_record)
            await worker.stop()
            yield RecordMessage(message_id="msg-2", record=sample_record)

        mock_queue.consume = consume

        await worker.start()

        assert worker.stats["processed"] == 1

    @pytest.mark.asyncio
    async def test_builds_runtime_when_no_service(self, mock_queue, metrics):
        runtime = MagicMock()
        runtime.close = AsyncMock()

        async def consume(count, block_ms):
            return
            yield

        mock_queue.consume = consume
        worker = AlertWorker(queue=mock_queue, metrics=metrics)

        with patch("src.services.alert_worker.open_runtime", AsyncMock(return_value=runtime)) as mock_open:
            await worker.start()

        mock_open.assert_awaited_once_with(metrics=metrics)
        runtime.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_check(self, worker):
        health = await worker.health_check()
        assert health == {
            "running": False,
            "redis": True,
            "stats": {"processed": 0, "deferred": 0, "failed": 0},
        }
