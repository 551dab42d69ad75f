"""
Prometheus metrics for monitoring alert evaluation and dispatch.

Defines and exposes metrics for:
- Records evaluated and matches per trigger kind
- Dispatch attempts per notifier kind and outcome
- Dispatch and evaluation latency
- Storage failures and registration rejections
- Record queue reclaim / DLQ activity

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the activity-alerts pipeline.

    Usage:
        metrics = MetricsCollector()
        metrics.start_server()

        metrics.record_dispatch("email", "delivered", latency=0.2)
        metrics.records_evaluated.labels(source="stream").inc()

    Pass a fresh ``CollectorRegistry`` to get an isolated collector (tests).
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        """Initialize Prometheus metrics."""
        self._registry = registry

        # Evaluation
        self.records_evaluated = Counter(
            "activity_alerts_records_evaluated_total",
            "Total number of records evaluated against alert definitions",
            ["source"],  # stream, api, listener, cli
            registry=registry,
        )

        self.matches = Counter(
            "activity_alerts_matches_total",
            "Total alert definitions matched by a record",
            ["trigger_kind"],
            registry=registry,
        )

        self.evaluation_latency = Histogram(
            "activity_alerts_evaluation_latency_seconds",
            "Time to evaluate one record end to end",
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )

        self.evaluation_errors = Counter(
            "activity_alerts_evaluation_errors_total",
            "Record evaluations aborted before completing",
            ["error_type"],  # storage_unavailable, timeout, unexpected
            registry=registry,
        )

        # Dispatch
        self.dispatch_attempts = Counter(
            "activity_alerts_dispatch_attempts_total",
            "Dispatch attempts per notifier kind and outcome",
            ["notifier_kind", "outcome"],
            registry=registry,
        )

        self.dispatch_latency = Histogram(
            "activity_alerts_dispatch_latency_seconds",
            "Time spent inside notifier calls",
            ["notifier_kind"],
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )

        # Registry
        self.registration_rejected = Counter(
            "activity_alerts_registration_rejected_total",
            "Trigger/notifier registrations rejected at startup",
            ["registry", "kind"],
            registry=registry,
        )

        # Queue metrics
        self.queue_reclaimed = Counter(
            "activity_alerts_queue_reclaimed_total",
            "Total messages reclaimed from dead consumers via XAUTOCLAIM",
            ["queue"],
            registry=registry,
        )

        self.dlq_messages = Counter(
            "activity_alerts_queue_dlq_total",
            "Total messages moved to the dead letter queue",
            ["queue", "reason"],
            registry=registry,
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=self._registry)
        logger.info("Prometheus metrics server started on port %d", port)

    # Convenience methods

    def record_evaluation(
        self,
        source: str,
        latency: float | None = None,
    ) -> None:
        """
        Record one completed record evaluation.

        Args:
            source: Where the record came from (stream, api, listener, cli)
            latency: Optional end-to-end latency in seconds
        """
        self.records_evaluated.labels(source=source).inc()
        if latency is not None:
            self.evaluation_latency.observe(latency)

    def record_match(self, trigger_kind: str) -> None:
        self.matches.labels(trigger_kind=trigger_kind).inc()

    def record_dispatch(
        self,
        notifier_kind: str,
        outcome: str,
        latency: float | None = None,
    ) -> None:
        """
        Record a dispatch attempt.

        Args:
            notifier_kind: Notification kind on the alert definition
            outcome: delivered, failed, timed_out, duplicate, notifier_unavailable
            latency: Seconds spent in the notifier, when it was invoked
        """
        self.dispatch_attempts.labels(
            notifier_kind=notifier_kind,
            outcome=outcome,
        ).inc()

        if latency is not None:
            self.dispatch_latency.labels(notifier_kind=notifier_kind).observe(latency)

    def record_evaluation_error(self, error_type: str) -> None:
        self.evaluation_errors.labels(error_type=error_type).inc()

    def record_registration_rejected(self, registry: str, kind: str, reason: str = "") -> None:
        """
        Record a rejected registration.

        Matches the registry ``on_reject`` callback signature; the reason is
        logged by the registry and not used as a label.
        """
        self.registration_rejected.labels(registry=registry, kind=kind).inc()

    def record_reclaimed(self, queue: str, count: int = 1) -> None:
        self.queue_reclaimed.labels(queue=queue).inc(count)

    def record_dlq(self, queue: str, reason: str) -> None:
        self.dlq_messages.labels(queue=queue, reason=reason).inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
