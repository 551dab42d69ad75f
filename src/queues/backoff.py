"""
Exponential backoff with jitter for retry loops.

Used by queue consumers when Redis is failing and by the alert worker
after a record could not be evaluated because alert storage was down.
"""

import asyncio
import random

from src.queues.config import QueueConfig


class ExponentialBackoff:
    """
    Delay = min(base * multiplier^attempt, max_delay), then +/- jitter.

    ``reset()`` after a success starts the sequence over.

    Usage:
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=60.0)
        while True:
            try:
                await do_work()
                backoff.reset()
            except TransientError:
                await backoff.sleep()
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
        jitter_range: float = 0.5,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter_range = jitter_range
        self._attempt = 0

    @classmethod
    def from_config(cls, config: QueueConfig) -> "ExponentialBackoff":
        return cls(
            base_delay=config.backoff_base_delay,
            max_delay=config.backoff_max_delay,
        )

    @property
    def attempt(self) -> int:
        """Failures since the last reset."""
        return self._attempt

    def next_delay(self) -> float:
        """Next delay in seconds; counts as one attempt."""
        delay = min(
            self.base_delay * (self.multiplier ** self._attempt),
            self.max_delay,
        )
        delay += delay * random.uniform(-self.jitter_range, self.jitter_range)
        self._attempt += 1
        return max(0.0, delay)

    async def sleep(self) -> float:
        """Sleep for the next delay and return it."""
        delay = self.next_delay()
        await asyncio.sleep(delay)
        return delay

    def reset(self) -> None:
        self._attempt = 0
