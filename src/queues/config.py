"""
Reclaim, dead-letter and backoff settings for Redis Streams queues.
"""

from dataclasses import dataclass


@dataclass
class QueueConfig:
    """
    Queue consumer behaviour.

    Attributes:
        idle_timeout_ms: How long a delivered message may stay unacked
            before another consumer may reclaim it. The alert worker leaves
            a message unacked when alert storage is down, so this is also
            the retry interval for those records.

        max_delivery_attempts: Deliveries after which a message goes to
            the dead letter stream instead of being processed again.

        reclaim_batch_size: Pending messages claimed per XAUTOCLAIM call.

        backoff_base_delay / backoff_max_delay: Bounds, in seconds, of
            the exponential backoff applied after Redis or storage errors.
    """

    idle_timeout_ms: int = 30_000
    max_delivery_attempts: int = 5
    reclaim_batch_size: int = 10

    backoff_base_delay: float = 1.0
    backoff_max_delay: float = 60.0
