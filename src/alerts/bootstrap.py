"""Wiring: build registries, dedup tracker and services from settings.

Registries are populated once here and treated as read-only afterwards.
Host code may pass extra trigger or notifier implementations; they are
registered after the built-ins, so a matching kind overrides a built-in.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis

from src.alerts.config import AlertsConfig
from src.alerts.dedup import (
    DedupTracker,
    InMemoryDedupTracker,
    PostgresDedupTracker,
    RedisDedupTracker,
)
from src.alerts.dispatcher import AlertDispatcher, DispatchHook
from src.alerts.lifecycle import AlertLifecycleService
from src.alerts.matching import MatchingEngine
from src.alerts.notifiers import (
    EmailNotifier,
    HighlightNotifier,
    HighlightStore,
    IftttNotifier,
    NoneNotifier,
    Notifier,
    WebhookNotifier,
)
from src.alerts.registry import NotifierRegistry, TriggerRegistry
from src.alerts.repository import AlertRepository, HighlightRepository
from src.alerts.service import AlertService
from src.alerts.triggers import Trigger, builtin_triggers
from src.config.settings import Settings, get_settings
from src.observability.metrics import MetricsCollector
from src.storage.database import Database

logger = logging.getLogger(__name__)


def builtin_notifiers(
    settings: Settings,
    config: AlertsConfig,
    highlight_store: HighlightStore | None = None,
) -> list[Notifier]:
    """Notifier kinds shipped with the service, configured from settings."""
    return [
        NoneNotifier(),
        HighlightNotifier(highlight_store),
        EmailNotifier(
            host=settings.smtp_host,
            from_address=settings.smtp_from_address,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout=min(settings.smtp_timeout_seconds, config.notify_timeout_seconds),
        ),
        WebhookNotifier(timeout=config.webhook_timeout_seconds),
        IftttNotifier(
            default_maker_key=settings.ifttt_maker_key,
            timeout=config.webhook_timeout_seconds,
        ),
    ]


def build_registries(
    settings: Settings | None = None,
    config: AlertsConfig | None = None,
    highlight_store: HighlightStore | None = None,
    extra_triggers: Iterable[Trigger] = (),
    extra_notifiers: Iterable[Notifier] = (),
    metrics: MetricsCollector | None = None,
) -> tuple[TriggerRegistry, NotifierRegistry]:
    """Create and populate the trigger and notifier registries.

    Implementations whose dependencies are missing (no SMTP host, no
    highlight store) are rejected and logged; startup continues.

    Returns:
        (trigger registry, notifier registry)
    """
    settings = settings or get_settings()
    config = config or AlertsConfig()
    on_reject = metrics.record_registration_rejected if metrics is not None else None

    triggers = TriggerRegistry(on_reject=on_reject)
    triggers.register_all([*builtin_triggers(), *extra_triggers])

    notifiers = NotifierRegistry(on_reject=on_reject)
    notifiers.register_all(
        [*builtin_notifiers(settings, config, highlight_store), *extra_notifiers]
    )

    logger.info(
        "Alert registries ready: triggers=%s notifiers=%s",
        triggers.kinds(), notifiers.kinds(),
    )
    return triggers, notifiers


def build_dedup_tracker(
    backend: str,
    database: Database | None = None,
    redis_client: Any | None = None,
    key_prefix: str = "alert:fired",
) -> DedupTracker:
    """Dedup tracker for the configured backend.

    Raises:
        ValueError: If the backend is unknown or its connection is missing.
    """
    if backend == "postgres":
        if database is None:
            raise ValueError("postgres dedup backend needs a database")
        return PostgresDedupTracker(database)
    if backend == "redis":
        if redis_client is None:
            raise ValueError("redis dedup backend needs a redis client")
        return RedisDedupTracker(redis_client, key_prefix=key_prefix)
    if backend == "memory":
        logger.warning("In-memory dedup markers are lost on restart")
        return InMemoryDedupTracker()
    raise ValueError(f"Unknown dedup backend {backend!r}")


@dataclass
class AlertRuntime:
    """Everything a process needs to evaluate records and manage alerts."""

    database: Database
    redis_client: Any | None
    triggers: TriggerRegistry
    notifiers: NotifierRegistry
    repository: AlertRepository
    highlights: HighlightRepository
    dedup: DedupTracker
    dispatcher: AlertDispatcher
    service: AlertService
    lifecycle: AlertLifecycleService

    async def create_tables(self) -> None:
        """Create alert_definitions, record_highlights and (postgres) marker tables."""
        await self.repository.create_tables()
        await self.highlights.create_tables()
        if isinstance(self.dedup, PostgresDedupTracker):
            await self.dedup.create_tables()

    async def close(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
        await self.database.close()


def build_runtime(
    database: Database,
    redis_client: Any | None = None,
    settings: Settings | None = None,
    config: AlertsConfig | None = None,
    metrics: MetricsCollector | None = None,
    hooks: Iterable[DispatchHook] = (),
    extra_triggers: Iterable[Trigger] = (),
    extra_notifiers: Iterable[Notifier] = (),
) -> AlertRuntime:
    """Assemble the alert pipeline around already-created connections."""
    settings = settings or get_settings()
    config = config or AlertsConfig()

    repository = AlertRepository(database)
    highlights = HighlightRepository(database)
    triggers, notifiers = build_registries(
        settings,
        config,
        highlight_store=highlights,
        extra_triggers=extra_triggers,
        extra_notifiers=extra_notifiers,
        metrics=metrics,
    )
    dedup = build_dedup_tracker(
        settings.dedup_backend,
        database=database,
        redis_client=redis_client,
        key_prefix=settings.dedup_key_prefix,
    )
    dispatcher = AlertDispatcher(notifiers, dedup, config=config, metrics=metrics, hooks=hooks)
    service = AlertService(
        repository,
        MatchingEngine(triggers),
        dispatcher,
        config=config,
        metrics=metrics,
    )

    return AlertRuntime(
        database=database,
        redis_client=redis_client,
        triggers=triggers,
        notifiers=notifiers,
        repository=repository,
        highlights=highlights,
        dedup=dedup,
        dispatcher=dispatcher,
        service=service,
        lifecycle=AlertLifecycleService(repository, triggers, notifiers),
    )


async def open_runtime(
    settings: Settings | None = None,
    config: AlertsConfig | None = None,
    metrics: MetricsCollector | None = None,
) -> AlertRuntime:
    """Connect to PostgreSQL (and Redis for the redis dedup backend) and build the runtime.

    Call ``close()`` on the result when done.
    """
    settings = settings or get_settings()

    database = Database()
    await database.connect()

    redis_client = None
    if settings.dedup_backend == "redis":
        redis_client = redis.from_url(
            str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
        )

    return build_runtime(
        database,
        redis_client=redis_client,
        settings=settings,
        config=config,
        metrics=metrics,
    )
