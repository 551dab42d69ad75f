"""Matching engine: which alert definitions does a record satisfy?

Stateless apart from the trigger registry it reads. Definitions are
evaluated in input order and yielded lazily, so the caller can start
dispatching before every trigger has run.
"""

import logging
from collections.abc import Iterable, Iterator

from src.alerts.registry import TriggerRegistry
from src.alerts.schemas import AlertDefinition, Record

logger = logging.getLogger(__name__)


class MatchingEngine:
    """Evaluates alert triggers against records."""

    def __init__(self, triggers: TriggerRegistry) -> None:
        self._triggers = triggers

    def find_matches(
        self,
        record: Record,
        alerts: Iterable[AlertDefinition],
    ) -> Iterator[AlertDefinition]:
        """Yield the enabled definitions whose trigger matches the record.

        A definition whose trigger kind does not resolve is inert and
        skipped. A trigger that raises counts as no match for that
        definition only.

        Args:
            record: Record under evaluation.
            alerts: Candidate definitions.

        Yields:
            Matching definitions, in input order.
        """
        for alert in alerts:
            if not alert.is_enabled:
                continue

            trigger = self._triggers.resolve(alert.trigger_kind)
            if trigger is None:
                logger.debug(
                    "Alert %s inert: trigger kind %r unavailable",
                    alert.alert_id, alert.trigger_kind,
                )
                continue

            try:
                matched = trigger.matches(alert.trigger_filters, record)
            except Exception as e:
                logger.warning(
                    "Trigger %r failed for alert %s on record %s: %s",
                    alert.trigger_kind, alert.alert_id, record.record_id, e,
                )
                continue

            if matched:
                yield alert
