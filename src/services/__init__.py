"""Long-running services that feed records into the alert pipeline."""

from src.services.alert_worker import AlertWorker

__all__ = ["AlertWorker"]
