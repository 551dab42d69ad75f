"""Alert rules matched against activity records.

Evaluates every incoming activity record against user-defined alert
definitions (a trigger kind with filters, paired with a notification kind
and its config) and fires each matching definition at most once per
record. Trigger and notification kinds are pluggable via registries.
"""

from src.alerts.config import AlertsConfig
from src.alerts.dedup import (
    DedupTracker,
    InMemoryDedupTracker,
    PostgresDedupTracker,
    RedisDedupTracker,
)
from src.alerts.dispatcher import AlertDispatcher
from src.alerts.errors import (
    AlertNotFoundError,
    AlertsError,
    FilterError,
    RegistrationError,
    StorageUnavailableError,
)
from src.alerts.lifecycle import AlertLifecycleService
from src.alerts.matching import MatchingEngine
from src.alerts.notifiers import Notifier
from src.alerts.registry import NotifierRegistry, TriggerRegistry
from src.alerts.repository import AlertRepository, HighlightRepository
from src.alerts.schemas import (
    AlertDefinition,
    AlertStatus,
    DispatchOutcome,
    DispatchResult,
    Record,
)
from src.alerts.service import AlertService
from src.alerts.triggers import Trigger

__all__ = [
    "AlertDefinition",
    "AlertDispatcher",
    "AlertLifecycleService",
    "AlertNotFoundError",
    "AlertRepository",
    "AlertService",
    "AlertStatus",
    "AlertsConfig",
    "AlertsError",
    "DedupTracker",
    "DispatchOutcome",
    "DispatchResult",
    "FilterError",
    "HighlightRepository",
    "InMemoryDedupTracker",
    "MatchingEngine",
    "Notifier",
    "NotifierRegistry",
    "PostgresDedupTracker",
    "Record",
    "RedisDedupTracker",
    "RegistrationError",
    "StorageUnavailableError",
    "Trigger",
    "TriggerRegistry",
]
