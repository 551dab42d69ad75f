"""Trigger predicates matching activity records against alert filters.

A trigger is a pure function of (filters, record): no I/O, no state. Each
built-in trigger reads a fixed set of filter dimensions. A dimension whose
accepted values are absent or empty matches any record value; every
configured dimension must match for the trigger to match.

Dedup, dispatch and persistence live elsewhere; triggers are trivially
testable in isolation.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from src.alerts.errors import FilterError
from src.alerts.schemas import Record

# Filter key -> Record attribute
DIMENSIONS: dict[str, str] = {
    "author": "author_id",
    "connector": "connector",
    "context": "context",
    "action": "action",
}

CONNECTOR_CONTEXT_KEY = "connector_context"


class Trigger(ABC):
    """Abstract base for alert trigger kinds."""

    @property
    @abstractmethod
    def kind(self) -> str:
        """Registry identifier (e.g. 'author', 'context')."""

    @property
    def name(self) -> str:
        """Human-readable label for the admin UI."""
        return self.kind.replace("_", " ").title()

    @property
    def filter_fields(self) -> tuple[str, ...]:
        """Filter keys this trigger reads."""
        return ()

    @abstractmethod
    def matches(self, filters: Mapping[str, Any], record: Record) -> bool:
        """Evaluate the alert's filters against a record.

        Args:
            filters: The alert's trigger_filters, unchanged.
            record: Record under evaluation.

        Returns:
            True if the record satisfies the filters.

        Raises:
            FilterError: If the filter data is malformed.
        """

    def is_dependency_satisfied(self) -> bool:
        """Whether everything this trigger needs at runtime is available."""
        return True

    def describe(self) -> dict[str, Any]:
        """Kind summary for listing available triggers."""
        return {
            "kind": self.kind,
            "name": self.name,
            "fields": list(self.filter_fields),
        }


def accepted_values(filters: Mapping[str, Any], key: str) -> frozenset[str]:
    """Normalize one filter dimension to a set of accepted values.

    ``None``, ``""`` and ``[]`` all mean "any value" and yield an empty set.
    A bare string is a one-element set.

    Raises:
        FilterError: If the value is not a string or a list of strings.
    """
    if not isinstance(filters, Mapping):
        raise FilterError(f"Trigger filters must be a mapping, got {type(filters).__name__}")

    raw = filters.get(key)
    if raw is None or raw == "":
        return frozenset()
    if isinstance(raw, str):
        return frozenset({raw})
    if isinstance(raw, (list, tuple, set, frozenset)):
        values: set[str] = set()
        for item in raw:
            if isinstance(item, bool) or not isinstance(item, (str, int)):
                raise FilterError(
                    f"Filter {key!r} contains unsupported value {item!r}"
                )
            if item != "":
                values.add(str(item))
        return frozenset(values)
    if isinstance(raw, int) and not isinstance(raw, bool):
        return frozenset({str(raw)})
    raise FilterError(f"Filter {key!r} has unsupported type {type(raw).__name__}")


class DimensionTrigger(Trigger):
    """Trigger that ANDs together wildcard-aware equality checks on record fields."""

    dimensions: tuple[str, ...] = ()

    @property
    def filter_fields(self) -> tuple[str, ...]:
        return self.dimensions

    def matches(self, filters: Mapping[str, Any], record: Record) -> bool:
        for key in self.dimensions:
            accepted = accepted_values(filters, key)
            if not accepted:
                continue
            value = getattr(record, DIMENSIONS[key])
            if str(value) not in accepted:
                return False
        return True


class AuthorTrigger(DimensionTrigger):
    """Matches records created by one of the configured authors."""

    dimensions = ("author",)

    @property
    def kind(self) -> str:
        return "author"


class ContextTrigger(DimensionTrigger):
    """Matches on connector and context.

    A connector-only filter matches every context under that connector.
    """

    dimensions = ("connector", "context")

    @property
    def kind(self) -> str:
        return "context"


class ActionTrigger(DimensionTrigger):
    """Matches records with one of the configured actions."""

    dimensions = ("action",)

    @property
    def kind(self) -> str:
        return "action"


class RecordTrigger(DimensionTrigger):
    """Matches on author, connector, context and action together."""

    dimensions = ("author", "connector", "context", "action")

    @property
    def kind(self) -> str:
        return "record"

    @property
    def name(self) -> str:
        return "Any Record Field"


def split_connector_context(value: str) -> tuple[str, str]:
    """Split the admin form's ``connector-context`` value.

    ``"posts-post"`` is connector ``posts`` with context ``post``. Only the
    first two dash-separated parts are used, so ``"posts-post-x"`` is also
    context ``post``. A value without a dash is a connector alone, and an
    empty value is neither.

    Args:
        value: Combined connector/context string.

    Returns:
        (connector, context) tuple; either may be empty.
    """
    if not value:
        return "", ""
    parts = value.split("-")
    if len(parts) == 1:
        return value, ""
    return parts[0], parts[1]


def expand_connector_context(filters: Mapping[str, Any]) -> dict[str, Any]:
    """Rewrite a ``connector_context`` shorthand into separate filter keys.

    Explicit ``connector`` / ``context`` keys win over the shorthand.

    Args:
        filters: Filters as submitted by the authoring client.

    Returns:
        New filters dict without the shorthand key.
    """
    expanded = dict(filters)
    combined = expanded.pop(CONNECTOR_CONTEXT_KEY, None)
    if not combined or not isinstance(combined, str):
        return expanded

    connector, context = split_connector_context(combined)
    if connector and not expanded.get("connector"):
        expanded["connector"] = [connector]
    if context and not expanded.get("context"):
        expanded["context"] = [context]
    return expanded


def builtin_triggers() -> list[Trigger]:
    """Trigger kinds shipped with the service."""
    return [AuthorTrigger(), ContextTrigger(), ActionTrigger(), RecordTrigger()]
