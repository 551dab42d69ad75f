"""
Tests for reclaiming and dead-lettering record stream messages.

A record whose evaluation hit a storage outage is left pending; these tests
cover how it comes back (XAUTOCLAIM), how many times, and where it ends up
once attempts are exhausted.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis import ConnectionError, ResponseError

from src.queues import QueueConfig, RecordQueue
from src.queues.records import RECORD_FIELD


@pytest.fixture
def metrics():
    m = MagicMock()
    with patch("src.queues.base.get_metrics", return_value=m):
        yield m


@pytest.fixture
def queue(metrics):
    q = RecordQueue(
        redis_url="redis://localhost:6379/1",
        stream_name="records",
        consumer_group="alert_workers",
        queue_config=QueueConfig(idle_timeout_ms=1_000, max_delivery_attempts=5),
    )
    q._redis = AsyncMock()
    q._consumer_name = "alert_worker_abc123"
    q._stream_config = q._get_stream_config()
    return q


@pytest.fixture
def fields(sample_record):
    return {RECORD_FIELD: json.dumps(sample_record.to_dict())}


def _claimed(queue, fields, times_delivered, msg_id="1-0"):
    queue._redis.xautoclaim.return_value = ["0-0", [(msg_id, fields)], []]
    queue._redis.xpending_range.return_value = [
        {"message_id": msg_id, "consumer": "alert_worker_dead", "times_delivered": times_delivered}
    ]


async def _drain(queue):
    return [job async for job in queue._reclaim_pending(count=10)]


def test_queue_config_defaults():
    config = QueueConfig()
    assert config.idle_timeout_ms == 30_000
    assert config.max_delivery_attempts == 5
    assert config.reclaim_batch_size == 10


class TestReclaim:
    @pytest.mark.asyncio
    async def test_idle_record_reclaimed(self, queue, fields, metrics):
        _claimed(queue, fields, times_delivered=2)

        reclaimed = await _drain(queue)

        assert len(reclaimed) == 1
        assert reclaimed[0].record.record_id == "1001"
        assert reclaimed[0].retry_count == 1
        queue._redis.xautoclaim.assert_awaited_once_with(
            name="records",
            groupname="alert_workers",
            consumername="alert_worker_abc123",
            min_idle_time=1_000,
            start_id="0-0",
            count=10,
        )
        metrics.record_reclaimed.assert_called_once_with("records")

    @pytest.mark.asyncio
    async def test_last_allowed_delivery_still_processed(self, queue, fields):
        _claimed(queue, fields, times_delivered=5)

        reclaimed = await _drain(queue)

        assert reclaimed[0].retry_count == 4
        queue._redis.xadd.assert_not_called()

    @pytest.mark.asyncio
    async def test_exhausted_record_dead_lettered(self, queue, fields, metrics):
        _claimed(queue, fields, times_delivered=6)

        assert await _drain(queue) == []

        dlq_stream, dlq_fields = queue._redis.xadd.call_args[0][:2]
        assert dlq_stream == "records:dlq"
        assert dlq_fields["error"] == "max_retries_exceeded"
        assert dlq_fields["original_id"] == "1-0"
        assert json.loads(dlq_fields[RECORD_FIELD])["record_id"] == "1001"
        queue._redis.xack.assert_awaited_once_with("records", "alert_workers", "1-0")
        metrics.record_dlq.assert_called_once_with("records", "max_retries_exceeded")

    @pytest.mark.asyncio
    async def test_unparseable_reclaimed_message_dead_lettered(self, queue, metrics):
        _claimed(queue, {RECORD_FIELD: "{broken"}, times_delivered=1)

        assert await _drain(queue) == []

        assert queue._redis.xadd.call_args[0][1]["error"].startswith("parse_error")
        metrics.record_dlq.assert_called_once_with("records", "parse_error")

    @pytest.mark.asyncio
    async def test_unknown_delivery_count_treated_as_first(self, queue, fields):
        queue._redis.xautoclaim.return_value = ["0-0", [("1-0", fields)], []]
        queue._redis.xpending_range.return_value = []

        reclaimed = await _drain(queue)

        assert reclaimed[0].retry_count == 0

    @pytest.mark.asyncio
    async def test_nothing_pending(self, queue):
        queue._redis.xautoclaim.return_value = ["0-0", [], []]

        assert await _drain(queue) == []
        queue._redis.xpending_range.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        ["ERR unknown command 'XAUTOCLAIM'", "LOADING Redis is loading"],
    )
    async def test_xautoclaim_errors_skip_reclaim(self, queue, error):
        queue._redis.xautoclaim.side_effect = ResponseError(error)
        assert await _drain(queue) == []


@pytest.mark.asyncio
async def test_pending_reclaimed_before_new_records(queue, fields, sample_record):
    calls = []

    async def xautoclaim(*args, **kwargs):
        calls.append("xautoclaim")
        return ["0-0", [("1-0", fields)], []]

    async def xreadgroup(*args, **kwargs):
        calls.append("xreadgroup")
        return []

    queue._redis.xautoclaim = xautoclaim
    queue._redis.xreadgroup = xreadgroup
    queue._redis.xpending_range.return_value = [
        {"message_id": "1-0", "consumer": "old", "times_delivered": 1}
    ]

    async for message in queue.consume(count=10, block_ms=100):
        break

    assert calls == ["xautoclaim"]
    assert message.record == sample_record


@pytest.mark.asyncio
async def test_new_records_start_at_zero_retries(queue, fields):
    queue._redis.xautoclaim.return_value = ["0-0", [], []]
    queue._redis.xreadgroup.return_value = [["records", [("2-0", fields)]]]

    async for message in queue.consume():
        break

    assert message.message_id == "2-0"
    assert message.retry_count == 0


class TestAckNack:
    @pytest.mark.asyncio
    async def test_ack(self, queue):
        await queue.ack("1-0")
        queue._redis.xack.assert_awaited_once_with("records", "alert_workers", "1-0")

    @pytest.mark.asyncio
    async def test_nack_copies_to_dlq(self, queue, fields, metrics):
        queue._redis.xrange.return_value = [("1-0", fields)]

        await queue.nack("1-0", error="TypeError: bad filter")

        dlq_stream, dlq_fields = queue._redis.xadd.call_args[0][:2]
        assert dlq_stream == "records:dlq"
        assert dlq_fields["error"] == "TypeError: bad filter"
        queue._redis.xack.assert_awaited_once()
        metrics.record_dlq.assert_called_once_with("records", "nack")

    @pytest.mark.asyncio
    async def test_nack_missing_message_still_acks(self, queue):
        queue._redis.xrange.return_value = []

        await queue.nack("1-0", error="gone")

        queue._redis.xadd.assert_not_called()
        queue._redis.xack.assert_awaited_once()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_creates_group(self):
        with patch("src.queues.base.redis") as redis_module:
            client = AsyncMock()
            redis_module.from_url.return_value = client

            async with RecordQueue(stream_name="records", consumer_group="g") as queue:
                assert queue.consumer_name.startswith("alert_worker_")

            client.xgroup_create.assert_awaited_once_with(
                name="records", groupname="g", id="0", mkstream=True,
            )
            client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_check(self, queue):
        assert await queue.health_check() is True
        queue._redis.ping.side_effect = ConnectionError()
        assert await queue.health_check() is False

    @pytest.mark.asyncio
    async def test_counts(self, queue):
        queue._redis.xpending.return_value = {"pending": 3}
        queue._redis.xlen.return_value = 100

        assert await queue.get_pending_count() == 3
        assert await queue.get_stream_length() == 100

    def test_requires_connect(self):
        with pytest.raises(RuntimeError, match="connect"):
            RecordQueue().redis
