"""Alert service: evaluate one record against every enabled alert.

load enabled definitions -> match -> dispatch. Matching is delegated to the
stateless ``MatchingEngine`` and delivery to ``AlertDispatcher``; this
module owns only the orchestration and the ingest listener's failure
policy.
"""

import asyncio
import time
from typing import Protocol

import structlog

from src.alerts.config import AlertsConfig
from src.alerts.dispatcher import AlertDispatcher
from src.alerts.errors import StorageUnavailableError
from src.alerts.matching import MatchingEngine
from src.alerts.schemas import AlertDefinition, DispatchOutcome, DispatchResult, Record
from src.observability.metrics import MetricsCollector
from src.observability.tracing import get_tracer, record_attributes, traced

logger = structlog.get_logger(__name__)


class AlertStore(Protocol):
    """Read side of the alert definition store used by the pipeline."""

    async def list_enabled(self) -> list[AlertDefinition]: ...


class AlertService:
    """Orchestrator for record evaluation.

    Definitions are fetched fresh for every record so status changes take
    effect on the next record without any cache invalidation.
    """

    def __init__(
        self,
        store: AlertStore,
        engine: MatchingEngine,
        dispatcher: AlertDispatcher,
        config: AlertsConfig | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._dispatcher = dispatcher
        self._config = config or AlertsConfig()
        self._metrics = metrics
        self._tracer = get_tracer(__name__)

    async def _load_enabled(self) -> list[AlertDefinition]:
        try:
            return await self._store.list_enabled()
        except StorageUnavailableError:
            raise
        except Exception as e:
            raise StorageUnavailableError(f"Cannot load alert definitions: {e}") from e

    async def process_record(
        self,
        record: Record,
        source: str = "direct",
    ) -> list[DispatchResult]:
        """Evaluate a record and dispatch every matching alert.

        Args:
            record: The record to evaluate.
            source: Label for metrics (stream, api, listener, cli).

        Returns:
            One DispatchResult per matched alert.

        Raises:
            StorageUnavailableError: If definitions or dedup markers are
                unreachable. No partial result is returned.
        """
        start = time.perf_counter()

        with traced(self._tracer, "evaluate_record", record_attributes(record)) as span:
            alerts = await self._load_enabled()
            matched = list(self._engine.find_matches(record, alerts))
            span.set_attribute("alerts.enabled", len(alerts))
            span.set_attribute("alerts.matched", len(matched))

            if self._metrics is not None:
                for alert in matched:
                    self._metrics.record_match(alert.trigger_kind)

            results = await self._dispatcher.dispatch_all(matched, record) if matched else []

        elapsed = time.perf_counter() - start
        if self._metrics is not None:
            self._metrics.record_evaluation(source, latency=elapsed)

        logger.debug(
            "Record evaluated",
            record_id=record.record_id,
            enabled=len(alerts),
            matched=len(matched),
            delivered=sum(1 for r in results if r.outcome is DispatchOutcome.DELIVERED),
            elapsed_ms=round(elapsed * 1000, 2),
        )
        return results

    async def on_record_inserted(self, record: Record) -> Record:
        """Ingest listener: evaluate a freshly inserted record.

        Never raises and never blocks the record's persistence on alert
        failures; the record is returned unmodified in every case.

        Args:
            record: The record that was just stored.

        Returns:
            The same record.
        """
        try:
            await asyncio.wait_for(
                self.process_record(record, source="listener"),
                timeout=self._config.evaluation_timeout_seconds,
            )
        except StorageUnavailableError as e:
            logger.critical(
                "Alert storage unavailable, record not evaluated",
                record_id=record.record_id,
                error=str(e),
            )
            self._count_error("storage_unavailable")
        except asyncio.TimeoutError:
            logger.error(
                "Alert evaluation timed out",
                record_id=record.record_id,
                timeout_seconds=self._config.evaluation_timeout_seconds,
            )
            self._count_error("timeout")
        except Exception as e:
            logger.error(
                "Unexpected alert evaluation error",
                record_id=record.record_id,
                error=str(e),
                exc_info=True,
            )
            self._count_error("unexpected")
        return record

    def _count_error(self, error_type: str) -> None:
        if self._metrics is not None:
            self._metrics.record_evaluation_error(error_type)
