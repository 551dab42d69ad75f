"""
Alert worker - consumes activity records from Redis and evaluates alerts.

For each message the worker runs the full pipeline (load enabled alerts,
match, dispatch) and acks on success. When alert storage is unavailable the
message is left pending: it is reclaimed after the queue's idle timeout, and
the dedup markers keep the retry from re-sending anything that already went
out. Unparseable messages are dead-lettered by the queue itself.

Features:
- Consumer group scaling (run several workers)
- Graceful shutdown
- Exponential backoff while storage is down
- Metrics and trace propagation from the publisher
"""

import asyncio
from typing import Any

import structlog

from src.alerts.bootstrap import AlertRuntime, open_runtime
from src.alerts.errors import StorageUnavailableError
from src.alerts.service import AlertService
from src.observability.logging import bind_context, clear_context
from src.observability.metrics import MetricsCollector, get_metrics
from src.observability.tracing import get_tracer, traced
from src.queues.backoff import ExponentialBackoff
from src.queues.records import RecordMessage, RecordQueue

logger = structlog.get_logger(__name__)


class AlertWorker:
    """
    Long-running consumer of the record stream.

    Usage:
        worker = AlertWorker()
        await worker.start()  # Runs until stop() or cancellation

    Pass ``queue`` and ``service`` to run against existing objects (tests);
    otherwise both are created from settings on start.
    """

    def __init__(
        self,
        queue: RecordQueue | None = None,
        service: AlertService | None = None,
        metrics: MetricsCollector | None = None,
        batch_size: int = 10,
        block_ms: int = 5000,
    ):
        """
        Args:
            queue: Record queue (or create from settings)
            service: Alert pipeline (or build from settings on start)
            metrics: Metrics collector (default: process-wide collector)
            batch_size: Messages fetched per read
            block_ms: XREADGROUP block time
        """
        self._queue = queue or RecordQueue()
        self._service = service
        self._metrics = metrics or get_metrics()
        self._batch_size = batch_size
        self._block_ms = block_ms

        self._runtime: AlertRuntime | None = None
        self._backoff = ExponentialBackoff()
        self._tracer = get_tracer(__name__)
        self._running = False
        self._stats = {"processed": 0, "deferred": 0, "failed": 0}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    async def start(self) -> None:
        """Connect and process records until stopped."""
        self._running = True
        logger.info("Starting alert worker")

        await self._queue.connect()
        if self._service is None:
            self._runtime = await open_runtime(metrics=self._metrics)
            self._service = self._runtime.service

        try:
            await self._process_loop()
        except asyncio.CancelledError:
            logger.info("Alert worker cancelled")
        finally:
            await self._cleanup()

    async def stop(self) -> None:
        """Finish the current message, then stop."""
        logger.info("Stopping alert worker")
        self._running = False

    async def _cleanup(self) -> None:
        self._running = False
        await self._queue.close()
        if self._runtime is not None:
            await self._runtime.close()
            self._runtime = None
        logger.info("Alert worker stopped", **self._stats)

    async def _process_loop(self) -> None:
        async for message in self._queue.consume(
            count=self._batch_size,
            block_ms=self._block_ms,
        ):
            if not self._running:
                break
            await self.handle_message(message)

    async def handle_message(self, message: RecordMessage) -> bool:
        """
        Evaluate one queued record.

        Args:
            message: Parsed stream message

        Returns:
            True if the message was acked (done), False if it was left
            pending for a later retry.
        """
        record = message.record
        bind_context(record_id=record.record_id, message_id=message.message_id)
        try:
            with traced(
                self._tracer,
                "alert_worker.handle",
                {"record.id": record.record_id, "retry_count": message.retry_count},
                parent_context=message.trace_context,
            ):
                results = await self._service.process_record(record, source="stream")
        except StorageUnavailableError as e:
            self._stats["deferred"] += 1
            self._metrics.record_evaluation_error("storage_unavailable")
            logger.critical(
                "Alert storage unavailable, leaving record pending",
                retry_count=message.retry_count,
                error=str(e),
            )
            await self._backoff.sleep()
            return False
        except Exception as e:
            self._stats["failed"] += 1
            self._metrics.record_evaluation_error("unexpected")
            logger.error("Record evaluation failed", error=str(e), exc_info=True)
            await self._queue.nack(message.message_id, f"{type(e).__name__}: {e}")
            return True
        finally:
            clear_context()

        await self._queue.ack(message.message_id)
        self._backoff.reset()
        self._stats["processed"] += 1
        logger.debug("Record processed", record_id=record.record_id, dispatched=len(results))
        return True

    async def health_check(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "redis": await self._queue.health_check(),
            "stats": self.stats,
        }
