"""Alert dispatcher delivering matched (alert, record) pairs exactly once.

For each pair the dispatcher resolves the notifier, consults and claims the
dedup marker, then invokes ``notify`` under a timeout. Every attempt yields
a ``DispatchResult`` which is logged, counted, and handed to any registered
hooks. Delivery failures are final: the marker stays set and nothing is
retried.

Pattern: Orchestrator, delegates to stateless notifiers and a dedup tracker.
"""

import asyncio
import time
from collections.abc import Callable, Iterable
from typing import Any

import structlog

from src.alerts.config import AlertsConfig
from src.alerts.dedup import DedupTracker
from src.alerts.errors import StorageUnavailableError
from src.alerts.registry import NotifierRegistry
from src.alerts.schemas import AlertDefinition, DispatchOutcome, DispatchResult, Record
from src.observability.metrics import MetricsCollector
from src.observability.tracing import get_tracer, traced

logger = structlog.get_logger(__name__)

DispatchHook = Callable[[DispatchResult], Any]


class AlertDispatcher:
    """Invokes notifiers for matched alerts with dedup and bounded concurrency."""

    def __init__(
        self,
        notifiers: NotifierRegistry,
        dedup: DedupTracker,
        config: AlertsConfig | None = None,
        metrics: MetricsCollector | None = None,
        hooks: Iterable[DispatchHook] | None = None,
    ) -> None:
        self._notifiers = notifiers
        self._dedup = dedup
        self._config = config or AlertsConfig()
        self._metrics = metrics
        self._hooks: list[DispatchHook] = list(hooks or [])
        self._tracer = get_tracer(__name__)

    def add_hook(self, hook: DispatchHook) -> None:
        """Register a callable receiving every DispatchResult."""
        self._hooks.append(hook)

    async def dispatch(self, alert: AlertDefinition, record: Record) -> DispatchResult:
        """Deliver one matched alert for one record.

        Args:
            alert: Definition whose trigger matched.
            record: The matching record.

        Returns:
            What happened. Never ``delivered`` twice for the same pair.

        Raises:
            StorageUnavailableError: If the dedup marker cannot be read or written.
        """
        attributes = {
            "alert.id": alert.alert_id,
            "record.id": record.record_id,
            "notifier.kind": alert.notification_kind,
        }
        with traced(self._tracer, "dispatch", attributes) as span:
            result = await self._dispatch(alert, record)
            span.set_attribute("dispatch.outcome", result.outcome.value)

        self._emit(result)
        return result

    async def dispatch_all(
        self,
        alerts: Iterable[AlertDefinition],
        record: Record,
    ) -> list[DispatchResult]:
        """Dispatch every matched alert for a record concurrently.

        At most ``dispatch_concurrency`` dispatches run at once. Each pair is
        isolated: one failing never affects its siblings. Unexpected errors
        become ``failed`` results.

        Args:
            alerts: Matched definitions (may be a lazy iterator).
            record: The matching record.

        Returns:
            One result per dispatch that completed, in input order.

        Raises:
            StorageUnavailableError: After all siblings settle, if any
                dispatch could not reach the dedup store.
        """
        semaphore = asyncio.Semaphore(self._config.dispatch_concurrency)
        alerts = list(alerts)

        async def bounded(alert: AlertDefinition) -> DispatchResult:
            async with semaphore:
                return await self.dispatch(alert, record)

        outcomes = await asyncio.gather(
            *(bounded(alert) for alert in alerts),
            return_exceptions=True,
        )

        results: list[DispatchResult] = []
        storage_error: StorageUnavailableError | None = None
        for alert, outcome in zip(alerts, outcomes):
            if isinstance(outcome, StorageUnavailableError):
                storage_error = storage_error or outcome
                continue
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.error(
                    "Unexpected dispatch error",
                    alert_id=alert.alert_id,
                    record_id=record.record_id,
                    error=str(outcome),
                )
                result = DispatchResult(
                    alert_id=alert.alert_id,
                    record_id=record.record_id,
                    notifier_kind=alert.notification_kind,
                    outcome=DispatchOutcome.FAILED,
                    detail=f"{type(outcome).__name__}: {outcome}",
                )
                self._emit(result)
                results.append(result)
                continue
            results.append(outcome)

        if storage_error is not None:
            raise storage_error
        return results

    async def _dispatch(self, alert: AlertDefinition, record: Record) -> DispatchResult:
        notifier = self._notifiers.resolve(alert.notification_kind)
        if notifier is None:
            if self._config.unavailable_notifier_policy == "skip":
                await self._dedup.mark_fired(alert.alert_id, record.record_id)
            return self._result(
                alert, record, DispatchOutcome.NOTIFIER_UNAVAILABLE,
                detail=f"notification kind {alert.notification_kind!r} unavailable",
            )

        if await self._dedup.already_fired(alert.alert_id, record.record_id):
            return self._result(alert, record, DispatchOutcome.DUPLICATE)

        if not await self._dedup.mark_fired(alert.alert_id, record.record_id):
            # Another evaluation claimed the pair between check and claim.
            return self._result(alert, record, DispatchOutcome.DUPLICATE, detail="claim lost")

        start = time.perf_counter()
        try:
            delivered = await asyncio.wait_for(
                notifier.notify(record, alert.notification_config),
                timeout=self._config.notify_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return self._result(
                alert, record, DispatchOutcome.TIMED_OUT,
                detail=f"exceeded {self._config.notify_timeout_seconds}s",
                start=start,
            )
        except asyncio.CancelledError:
            # The pair is already claimed, so this attempt is final: report it
            # before unwinding.
            self._emit(self._result(
                alert, record, DispatchOutcome.TIMED_OUT,
                detail="evaluation cancelled",
                start=start,
            ))
            raise
        except Exception as e:
            return self._result(
                alert, record, DispatchOutcome.FAILED,
                detail=f"{type(e).__name__}: {e}",
                start=start,
            )

        outcome = DispatchOutcome.DELIVERED if delivered else DispatchOutcome.FAILED
        return self._result(alert, record, outcome, start=start)

    def _result(
        self,
        alert: AlertDefinition,
        record: Record,
        outcome: DispatchOutcome,
        detail: str | None = None,
        start: float | None = None,
    ) -> DispatchResult:
        latency_ms = (time.perf_counter() - start) * 1000 if start is not None else 0.0
        return DispatchResult(
            alert_id=alert.alert_id,
            record_id=record.record_id,
            notifier_kind=alert.notification_kind,
            outcome=outcome,
            detail=detail,
            latency_ms=latency_ms,
        )

    def _emit(self, result: DispatchResult) -> None:
        """Surface one attempt to logs, metrics and hooks."""
        fields = {
            "alert_id": result.alert_id,
            "record_id": result.record_id,
            "notifier_kind": result.notifier_kind,
            "outcome": result.outcome.value,
        }
        if result.outcome is DispatchOutcome.DELIVERED:
            logger.info("Alert dispatched", latency_ms=round(result.latency_ms, 2), **fields)
        elif result.outcome is DispatchOutcome.DUPLICATE:
            logger.debug("Alert already dispatched", **fields)
        else:
            logger.warning("Alert not delivered", detail=result.detail, **fields)

        if self._metrics is not None:
            try:
                self._metrics.record_dispatch(
                    result.notifier_kind,
                    result.outcome.value,
                    latency=result.latency_ms / 1000 if result.attempted else None,
                )
            except Exception as e:
                logger.debug("Dispatch metrics failed", error=str(e))

        for hook in self._hooks:
            try:
                hook(result)
            except Exception as e:
                logger.warning(
                    "Dispatch hook failed",
                    hook=getattr(hook, "__name__", repr(hook)),
                    error=str(e),
                )
