"""
Redis Streams queue carrying activity records to the alert workers.

Each message has a ``record`` field holding the record as JSON and, when
the publisher was inside a span, a ``traceparent`` field.
"""

import json
import logging
from dataclasses import dataclass, field

from src.alerts.schemas import Record
from src.config.settings import get_settings
from src.observability.tracing import extract_trace_context, inject_trace_context
from src.queues.base import BaseRedisQueue, StreamConfig
from src.queues.config import QueueConfig

logger = logging.getLogger(__name__)

RECORD_FIELD = "record"


@dataclass
class RecordMessage:
    """
    A record delivered from the stream.

    Attributes:
        message_id: Stream entry id, needed to ack
        record: The parsed activity record
        retry_count: Earlier deliveries of this message
        fields: Raw message fields (trace context lives here)
    """

    message_id: str
    record: Record
    retry_count: int = 0
    fields: dict[str, str] = field(default_factory=dict)

    @property
    def trace_context(self):
        """Publisher's span context, or None."""
        return extract_trace_context(self.fields)


class RecordQueue(BaseRedisQueue[RecordMessage]):
    """
    Queue of records awaiting alert evaluation.

    Usage:
        async with RecordQueue() as queue:
            await queue.publish(record)

            async for message in queue.consume():
                await service.process_record(message.record)
                await queue.ack(message.message_id)
    """

    def __init__(
        self,
        redis_url: str | None = None,
        stream_name: str | None = None,
        consumer_group: str | None = None,
        max_stream_length: int | None = None,
        queue_config: QueueConfig | None = None,
    ):
        settings = get_settings()
        super().__init__(
            redis_url=redis_url or str(settings.redis_url),
            queue_config=queue_config,
        )
        self._stream_name = stream_name or settings.record_stream_name
        self._consumer_group = consumer_group or settings.record_consumer_group
        self._max_stream_length = max_stream_length or settings.record_max_stream_length

    def _get_stream_config(self) -> StreamConfig:
        return StreamConfig(
            stream_name=self._stream_name,
            consumer_group=self._consumer_group,
            dlq_stream_name=f"{self._stream_name}:dlq",
            max_stream_length=self._max_stream_length,
        )

    def _get_consumer_prefix(self) -> str:
        return "alert_worker"

    def _parse_job(self, message_id: str, fields: dict[str, str]) -> RecordMessage:
        raw = fields.get(RECORD_FIELD)
        if raw is None:
            raise ValueError(f"message has no {RECORD_FIELD!r} field")
        return RecordMessage(
            message_id=message_id,
            record=Record.from_dict(json.loads(raw)),
            fields=dict(fields),
        )

    def _set_job_retry_count(self, job: RecordMessage, retry_count: int) -> None:
        job.retry_count = retry_count

    async def publish(self, record: Record) -> str:
        """
        Append a record to the stream.

        Args:
            record: Record to evaluate

        Returns:
            Stream message id
        """
        fields = {
            RECORD_FIELD: json.dumps(record.to_dict()),
            **inject_trace_context(),
        }
        message_id = await self.redis.xadd(
            self.stream_config.stream_name,
            fields,
            maxlen=self.stream_config.max_stream_length,
            approximate=True,
        )
        logger.debug("Published record %s as %s", record.record_id, message_id)
        return message_id
