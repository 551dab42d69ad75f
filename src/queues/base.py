"""
Base class for Redis Streams consumer-group queues.

Handles what every stream consumer needs:
- connection lifecycle and consumer group creation
- XREADGROUP consumption, reclaiming idle pending messages first (XAUTOCLAIM)
- ack, nack to a dead letter stream, and DLQ after too many deliveries
- exponential backoff when Redis itself is failing

A message stays pending until acked. If the consumer dies, or chooses not
to ack, another consumer reclaims it once it has been idle for
``QueueConfig.idle_timeout_ms``. Delivery is therefore at-least-once.
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from types import TracebackType
from typing import Generic, TypeVar

import redis.asyncio as redis

from src.observability.metrics import get_metrics
from src.queues.backoff import ExponentialBackoff
from src.queues.config import QueueConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

DLQ_MAX_LENGTH = 10_000


@dataclass
class StreamConfig:
    """
    Names and limits for one Redis stream.

    Attributes:
        stream_name: Stream messages are published to
        consumer_group: Group shared by all workers of this queue
        dlq_stream_name: Stream receiving unprocessable messages
        max_stream_length: Approximate length the stream is trimmed to
    """

    stream_name: str
    consumer_group: str
    dlq_stream_name: str
    max_stream_length: int = 50_000


class BaseRedisQueue(ABC, Generic[T]):
    """
    Redis Streams queue yielding parsed jobs of type T.

    Subclasses implement:
        - _parse_job(): message fields -> T (raise to send it to the DLQ)
        - _get_stream_config(): stream and group names
        - _get_consumer_prefix(): prefix for this process's consumer name
        - _set_job_retry_count(): record how often the message was delivered

    Usage:
        async with RecordQueue() as queue:
            async for job in queue.consume():
                await handle(job)
                await queue.ack(job.message_id)
    """

    def __init__(
        self,
        redis_url: str,
        queue_config: QueueConfig | None = None,
    ):
        """
        Args:
            redis_url: Redis connection URL
            queue_config: Reclaim, DLQ and backoff settings
        """
        self._redis_url = redis_url
        self._queue_config = queue_config or QueueConfig()

        self._redis: redis.Redis | None = None
        self._consumer_name: str | None = None
        self._stream_config: StreamConfig | None = None

    @abstractmethod
    def _parse_job(self, message_id: str, fields: dict[str, str]) -> T:
        """Build a job from raw message fields."""

    @abstractmethod
    def _get_stream_config(self) -> StreamConfig:
        """Stream configuration for this queue."""

    @abstractmethod
    def _get_consumer_prefix(self) -> str:
        """Prefix for generated consumer names, e.g. ``alert_worker``."""

    @abstractmethod
    def _set_job_retry_count(self, job: T, retry_count: int) -> None:
        """Store the number of earlier deliveries on the job."""

    async def connect(self) -> None:
        """Connect and make sure the stream and consumer group exist."""
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self._stream_config = self._get_stream_config()
        self._consumer_name = f"{self._get_consumer_prefix()}_{uuid.uuid4().hex[:8]}"

        try:
            await self._redis.xgroup_create(
                name=self._stream_config.stream_name,
                groupname=self._stream_config.consumer_group,
                id="0",
                mkstream=True,
            )
            logger.info(
                "Created consumer group %s on stream %s",
                self._stream_config.consumer_group,
                self._stream_config.stream_name,
            )
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

        logger.info(
            "Connected to Redis: consumer=%s stream=%s",
            self._consumer_name, self._stream_config.stream_name,
        )

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info(
                "Redis connection closed for stream %s",
                self._stream_config.stream_name if self._stream_config else "unknown",
            )

    async def __aenter__(self) -> "BaseRedisQueue[T]":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def redis(self) -> redis.Redis:
        """Redis client, raising if not connected."""
        if self._redis is None:
            raise RuntimeError("Not connected to Redis. Call connect() first.")
        return self._redis

    @property
    def stream_config(self) -> StreamConfig:
        if self._stream_config is None:
            raise RuntimeError("Not connected. Call connect() first.")
        return self._stream_config

    @property
    def consumer_name(self) -> str | None:
        return self._consumer_name

    async def consume(
        self,
        count: int = 10,
        block_ms: int = 5000,
    ) -> AsyncIterator[T]:
        """
        Yield jobs until cancelled.

        Each round first reclaims idle pending messages (crashed consumers,
        or messages deliberately left unacked), then reads new ones. Errors
        talking to Redis back off exponentially instead of spinning.

        Args:
            count: Maximum messages per read
            block_ms: How long XREADGROUP blocks waiting for new messages

        Yields:
            Parsed jobs; ack each one via ``ack(job.message_id)``
        """
        if self._consumer_name is None:
            raise RuntimeError("Not connected. Call connect() first.")

        backoff = ExponentialBackoff.from_config(self._queue_config)

        while True:
            try:
                async for job in self._reclaim_pending(self._queue_config.reclaim_batch_size):
                    yield job

                messages = await self.redis.xreadgroup(
                    groupname=self.stream_config.consumer_group,
                    consumername=self._consumer_name,
                    streams={self.stream_config.stream_name: ">"},
                    count=count,
                    block=block_ms,
                )
                backoff.reset()

                # [[stream_name, [(id, fields), ...]], ...]
                for _stream, entries in messages or []:
                    for msg_id, fields in entries:
                        job = await self._parse_or_dead_letter(msg_id, fields)
                        if job is None:
                            continue
                        self._set_job_retry_count(job, 0)
                        yield job

            except asyncio.CancelledError:
                logger.info("Consumer %s cancelled, stopping", self._consumer_name)
                break
            except redis.RedisError as e:
                delay = backoff.next_delay()
                logger.error(
                    "Error consuming from %s (retry in %.1fs): %s",
                    self.stream_config.stream_name, delay, e,
                )
                await asyncio.sleep(delay)

    async def _parse_or_dead_letter(self, msg_id: str, fields: dict[str, str]) -> T | None:
        try:
            return self._parse_job(msg_id, fields)
        except Exception as e:
            logger.error("Unparseable message %s: %s", msg_id, e)
            await self._move_to_dlq(msg_id, fields, f"parse_error: {e}")
            await self.ack(msg_id)
            get_metrics().record_dlq(self.stream_config.stream_name, "parse_error")
            return None

    async def _reclaim_pending(self, count: int) -> AsyncIterator[T]:
        """
        Claim messages idle longer than ``idle_timeout_ms`` for this consumer.

        Messages delivered more than ``max_delivery_attempts`` times go to
        the DLQ instead of being yielded.
        """
        metrics = get_metrics()
        stream = self.stream_config.stream_name

        try:
            # [next_start_id, [(msg_id, fields), ...], [deleted_ids]]
            result = await self.redis.xautoclaim(
                name=stream,
                groupname=self.stream_config.consumer_group,
                consumername=self._consumer_name,
                min_idle_time=self._queue_config.idle_timeout_ms,
                start_id="0-0",
                count=count,
            )
        except redis.ResponseError as e:
            if "unknown command" in str(e).lower():
                logger.warning("XAUTOCLAIM needs Redis 6.2+, pending reclaim disabled")
            else:
                logger.error("Error reclaiming pending messages: %s", e)
            return

        claimed = result[1] if result else []
        if not claimed:
            return

        logger.info("Reclaimed %d pending messages from %s", len(claimed), stream)
        delivery_counts = await self._get_delivery_counts([msg_id for msg_id, _ in claimed])

        for msg_id, fields in claimed:
            deliveries = delivery_counts.get(msg_id, 1)

            if deliveries > self._queue_config.max_delivery_attempts:
                logger.warning(
                    "Message %s delivered %d times (max %d), moving to DLQ",
                    msg_id, deliveries, self._queue_config.max_delivery_attempts,
                )
                await self._move_to_dlq(msg_id, fields, "max_retries_exceeded")
                await self.ack(msg_id)
                metrics.record_dlq(stream, "max_retries_exceeded")
                continue

            job = await self._parse_or_dead_letter(msg_id, fields)
            if job is None:
                continue
            self._set_job_retry_count(job, deliveries - 1)
            metrics.record_reclaimed(stream)
            yield job

    async def _get_delivery_counts(self, message_ids: list[str]) -> dict[str, int]:
        """Map message id -> times delivered, from XPENDING."""
        if not message_ids:
            return {}

        wanted = set(message_ids)
        try:
            pending = await self.redis.xpending_range(
                name=self.stream_config.stream_name,
                groupname=self.stream_config.consumer_group,
                min="-",
                max="+",
                count=len(message_ids) * 2,
            )
        except redis.RedisError as e:
            logger.error("Error reading delivery counts: %s", e)
            return {msg_id: 1 for msg_id in message_ids}

        return {
            info["message_id"]: info["times_delivered"]
            for info in pending
            if info["message_id"] in wanted
        }

    async def ack(self, message_id: str) -> None:
        """Mark a message as processed."""
        await self.redis.xack(
            self.stream_config.stream_name,
            self.stream_config.consumer_group,
            message_id,
        )
        logger.debug("Acknowledged message %s", message_id)

    async def nack(
        self,
        message_id: str,
        error: str | None = None,
    ) -> None:
        """
        Give up on a message: copy it to the DLQ and ack the original.

        Args:
            message_id: The message that failed
            error: Reason stored on the DLQ entry
        """
        messages = await self.redis.xrange(
            self.stream_config.stream_name,
            min=message_id,
            max=message_id,
        )
        if messages:
            _, fields = messages[0]
            await self._move_to_dlq(message_id, fields, error)
            get_metrics().record_dlq(self.stream_config.stream_name, "nack")

        await self.ack(message_id)

    async def _move_to_dlq(
        self,
        original_id: str,
        fields: dict[str, str],
        error: str | None,
    ) -> None:
        await self.redis.xadd(
            self.stream_config.dlq_stream_name,
            {
                **fields,
                "original_id": original_id,
                "error": error or "unknown",
                "failed_at": str(time.time()),
            },
            maxlen=DLQ_MAX_LENGTH,
        )
        logger.warning("Moved message %s to DLQ: %s", original_id, error)

    async def get_pending_count(self) -> int:
        """Messages delivered but not yet acked."""
        try:
            info = await self.redis.xpending(
                self.stream_config.stream_name,
                self.stream_config.consumer_group,
            )
            return info["pending"] if info else 0
        except redis.RedisError:
            return 0

    async def get_stream_length(self) -> int:
        return await self.redis.xlen(self.stream_config.stream_name)

    async def health_check(self) -> bool:
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False
