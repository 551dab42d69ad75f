"""
Command-line interface for activity-alerts.

Provides commands to run the alert worker and API, initialize the
database, manage alert definitions and evaluate records by hand.

Usage:
    activity-alerts worker          # Consume the record stream
    activity-alerts serve           # Run the REST API
    activity-alerts init-db         # Create tables
    activity-alerts health          # Check service health
    activity-alerts alerts list     # Show alert definitions
    activity-alerts evaluate FILE   # Evaluate one record (JSON)
"""

import asyncio
import json
import signal
import sys
from typing import Any

import click

from src.config.settings import get_settings
from src.observability.logging import setup_logging
from src.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Activity Alerts - rule-based notifications on the activity log."""
    if debug:
        import os
        os.environ["DEBUG"] = "true"
        get_settings.cache_clear()

    setup_logging()

    # Initialize tracing if enabled
    settings = get_settings()
    if settings.tracing_enabled:
        from src.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@main.command()
@click.option("--batch-size", default=10, help="Messages to read per batch")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def worker(batch_size: int, metrics: bool, metrics_port: int | None) -> None:
    """Run the alert worker on the record stream."""
    from src.services.alert_worker import AlertWorker

    async def run():
        alert_worker = AlertWorker(batch_size=batch_size)

        if metrics:
            get_metrics().start_server(port=metrics_port)

        # Handle shutdown signals
        loop = asyncio.get_event_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(alert_worker.stop()))

        await alert_worker.start()

    asyncio.run(run())


@main.command("init-db")
def init_db() -> None:
    """Create alert definition, marker and highlight tables."""
    from src.alerts.bootstrap import open_runtime

    async def run():
        runtime = await open_runtime()
        try:
            await runtime.create_tables()
            click.echo("Database initialized successfully")
        finally:
            await runtime.close()

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}

        # Check Redis
        try:
            from src.queues.records import RecordQueue
            queue = RecordQueue()
            await queue.connect()
            results["redis"] = await queue.health_check()
            await queue.close()
        except Exception as e:
            results["redis"] = False
            logger.error("Redis health check failed", error=str(e))

        # Check PostgreSQL
        try:
            from src.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        settings = get_settings()
        results["smtp_configured"] = settings.smtp_configured
        results["ifttt_configured"] = settings.ifttt_maker_key is not None

        # Print results
        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("redis", "postgres") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def serve(host: str | None, port: int | None, reload: bool, metrics_port: int | None) -> None:
    """Start the alerts API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    metrics_port = metrics_port or settings.metrics_port

    # Start metrics server on separate port
    get_metrics().start_server(port=metrics_port)

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"Metrics available on http://localhost:{metrics_port}/metrics")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "src.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@main.command()
def kinds() -> None:
    """List registered trigger and notification kinds.

    Kinds whose dependencies are missing (e.g. email without SMTP) are
    absent from the list.
    """
    from src.alerts.bootstrap import build_registries

    triggers, notifiers = build_registries()

    click.echo("\nTrigger kinds:")
    for item in triggers.describe():
        _echo_kind(item)

    click.echo("\nNotification kinds:")
    for item in notifiers.describe():
        _echo_kind(item)


def _echo_kind(item: dict[str, Any]) -> None:
    fields = ", ".join(item["fields"]) or "-"
    click.echo(f"  {item['kind']:12s} {item['name']:18s} {fields}")


def _load_record(source: Any):
    """Parse a Record from a JSON file or stdin stream."""
    from src.alerts.schemas import Record

    try:
        data = json.load(source)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}")
    try:
        return Record.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise click.BadParameter(f"not a valid record: {e}")


@main.command()
@click.argument("record_file", type=click.File("r"), default="-")
def evaluate(record_file: Any) -> None:
    """Evaluate one record against every enabled alert.

    RECORD_FILE holds the record as JSON ('-' reads stdin). Matching alerts
    are dispatched for real; pairs that already fired are reported as
    duplicates.

    Example:
        echo '{"record_id": "1", "author_id": "7", "connector": "posts",
               "context": "post", "action": "updated"}' | activity-alerts evaluate
    """
    from src.alerts.bootstrap import open_runtime
    from src.alerts.errors import StorageUnavailableError

    record = _load_record(record_file)

    async def run():
        runtime = await open_runtime(metrics=get_metrics())
        try:
            results = await runtime.service.process_record(record, source="cli")
        except StorageUnavailableError as e:
            click.echo(click.style(f"Alert storage unavailable: {e}", fg="red"), err=True)
            sys.exit(1)
        finally:
            await runtime.close()

        if not results:
            click.echo(f"Record {record.record_id}: no alerts matched")
            return

        click.echo(f"Record {record.record_id}: {len(results)} alert(s) matched")
        for result in results:
            color = "green" if result.outcome.value == "delivered" else "yellow"
            line = f"  {result.alert_id}  {result.notifier_kind:10s} {result.outcome.value}"
            if result.detail:
                line += f" ({result.detail})"
            click.echo(click.style(line, fg=color))

    asyncio.run(run())


@main.command()
@click.argument("record_file", type=click.File("r"), default="-")
def publish(record_file: Any) -> None:
    """Publish one record (JSON) onto the record stream for the workers."""
    from src.queues.records import RecordQueue

    record = _load_record(record_file)

    async def run():
        async with RecordQueue() as queue:
            message_id = await queue.publish(record)
        click.echo(f"Published record {record.record_id} as {message_id}")

    asyncio.run(run())


# ── Alert definitions ────────────────────────────────────────


@main.group()
def alerts() -> None:
    """Manage alert definitions."""


@alerts.command("list")
@click.option("--status", type=click.Choice(["enabled", "disabled"]), default=None,
              help="Only alerts with this status")
@click.option("--author", "author_id", default=None, help="Only alerts owned by this author")
@click.option("--limit", default=None, type=int, help="Maximum alerts to show")
def alerts_list(status: str | None, author_id: str | None, limit: int | None) -> None:
    """List alert definitions, oldest first."""
    from src.alerts.bootstrap import open_runtime

    async def run():
        runtime = await open_runtime()
        try:
            items = await runtime.lifecycle.list_alerts(
                status=status, author_id=author_id, limit=limit,
            )
        finally:
            await runtime.close()

        if not items:
            click.echo("No alerts found.")
            return

        click.echo(f"\n{len(items)} alert(s)")
        click.echo("=" * 72)
        for alert in items:
            color = "green" if alert.is_enabled else "white"
            click.echo(click.style(
                f"  {alert.alert_id}  {alert.status.value:8s} "
                f"{alert.trigger_kind} -> {alert.notification_kind}  (author {alert.author_id})",
                fg=color,
            ))
            if alert.trigger_filters:
                click.echo(f"      filters: {json.dumps(alert.trigger_filters, sort_keys=True)}")

    asyncio.run(run())


@alerts.command("create")
@click.option("--author", "author_id", required=True, help="Owning author id")
@click.option("--trigger", "trigger_kind", required=True, help="Trigger kind, e.g. context")
@click.option("--filters", default="{}", help="Trigger filters as JSON")
@click.option("--notify", "notification_kind", required=True, help="Notification kind, e.g. email")
@click.option("--config", "notification_config", default="{}", help="Notification config as JSON")
def alerts_create(
    author_id: str,
    trigger_kind: str,
    filters: str,
    notification_kind: str,
    notification_config: str,
) -> None:
    """Create an enabled alert definition.

    Example:
        activity-alerts alerts create --author 7 --trigger context \\
            --filters '{"connector_context": "posts-post"}' \\
            --notify email --config '{"recipient": "ops@example.com"}'
    """
    from src.alerts.bootstrap import open_runtime

    try:
        trigger_filters = json.loads(filters)
        config = json.loads(notification_config)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}")

    async def run():
        runtime = await open_runtime()
        try:
            alert = await runtime.lifecycle.create(
                author_id=author_id,
                trigger_kind=trigger_kind,
                trigger_filters=trigger_filters,
                notification_kind=notification_kind,
                notification_config=config,
            )
        finally:
            await runtime.close()
        click.echo(click.style(f"Created alert {alert.alert_id}", fg="green"))

    asyncio.run(run())


def _set_status(alert_id: str, status: str) -> None:
    from src.alerts.bootstrap import open_runtime
    from src.alerts.errors import AlertNotFoundError

    async def run():
        runtime = await open_runtime()
        try:
            alert = await runtime.lifecycle.set_status(alert_id, status)
        except AlertNotFoundError as e:
            click.echo(click.style(str(e), fg="red"), err=True)
            sys.exit(1)
        finally:
            await runtime.close()
        click.echo(f"Alert {alert.alert_id} is now {alert.status.value}")

    asyncio.run(run())


@alerts.command("enable")
@click.argument("alert_id")
def alerts_enable(alert_id: str) -> None:
    """Enable an alert definition."""
    _set_status(alert_id, "enabled")


@alerts.command("disable")
@click.argument("alert_id")
def alerts_disable(alert_id: str) -> None:
    """Disable an alert definition. It stops matching from the next record."""
    _set_status(alert_id, "disabled")


@alerts.command("delete")
@click.argument("alert_id")
@click.confirmation_option(prompt="Delete this alert definition?")
def alerts_delete(alert_id: str) -> None:
    """Delete an alert definition."""
    from src.alerts.bootstrap import open_runtime
    from src.alerts.errors import AlertNotFoundError

    async def run():
        runtime = await open_runtime()
        try:
            await runtime.lifecycle.delete(alert_id)
        except AlertNotFoundError as e:
            click.echo(click.style(str(e), fg="red"), err=True)
            sys.exit(1)
        finally:
            await runtime.close()
        click.echo(f"Deleted alert {alert_id}")

    asyncio.run(run())


if __name__ == "__main__":
    main()
