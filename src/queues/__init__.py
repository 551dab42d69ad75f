"""
Redis Streams queues with pending-message reclaim and dead-lettering.

Classes:
    BaseRedisQueue: Generic consumer-group queue
    StreamConfig: Stream, group and DLQ names
    QueueConfig: Reclaim, DLQ and backoff settings
    RecordQueue: Activity records awaiting alert evaluation
    ExponentialBackoff: Delay calculator for retry loops
"""

from src.queues.backoff import ExponentialBackoff
from src.queues.base import BaseRedisQueue, StreamConfig
from src.queues.config import QueueConfig
from src.queues.records import RecordMessage, RecordQueue

__all__ = [
    "BaseRedisQueue",
    "StreamConfig",
    "QueueConfig",
    "RecordQueue",
    "RecordMessage",
    "ExponentialBackoff",
]
