"""Registries mapping trigger and notifier kinds to implementations.

Populated once at process start (see ``bootstrap.build_registries``) and
treated as read-only afterwards; registration is not guarded against
concurrent resolution.

An implementation is admitted only if it is an instance of the capability
base class and its ``is_dependency_satisfied()`` check passes. Rejections
are logged and counted but never fatal: the service carries on with the
kinds that did register. Re-registering a kind replaces the previous entry
so host code can override built-ins.
"""

import logging
from typing import Any, Generic, TypeVar

from src.alerts.errors import RegistrationError
from src.alerts.notifiers import Notifier
from src.alerts.triggers import Trigger

logger = logging.getLogger(__name__)

T = TypeVar("T", Trigger, Notifier)


class Registry(Generic[T]):
    """Kind -> implementation map with capability and dependency validation."""

    capability: type = object
    label: str = "implementation"

    def __init__(self, on_reject: Any | None = None) -> None:
        """
        Args:
            on_reject: Optional callable ``(registry_label, kind, reason)``
                invoked for every rejected registration (metrics hook).
        """
        self._entries: dict[str, T] = {}
        self._on_reject = on_reject

    def register(self, kind: str, implementation: Any, *, strict: bool = False) -> bool:
        """Add an implementation under ``kind``.

        Args:
            kind: Identifier stored on alert definitions.
            implementation: Candidate object.
            strict: Raise instead of logging when the candidate is rejected.

        Returns:
            True if registered, False if rejected.

        Raises:
            RegistrationError: If rejected and ``strict`` is set.
        """
        reason = self._rejection_reason(implementation)
        if reason is not None:
            self._reject(kind, reason)
            if strict:
                raise RegistrationError(kind, reason)
            return False

        if kind in self._entries:
            logger.info(
                "Registered %s %r replaces %s",
                self.label, kind, type(self._entries[kind]).__name__,
            )
        self._entries[kind] = implementation
        return True

    def register_all(self, implementations: list[Any]) -> list[str]:
        """Register each implementation under its own ``kind``.

        Returns:
            Kinds that were registered.
        """
        registered: list[str] = []
        for impl in implementations:
            kind = getattr(impl, "kind", None)
            if not isinstance(kind, str) or not kind:
                self._reject(repr(impl), "missing kind identifier")
                continue
            if self.register(kind, impl):
                registered.append(kind)
        return registered

    def unregister(self, kind: str) -> None:
        self._entries.pop(kind, None)

    def resolve(self, kind: str) -> T | None:
        """Look up a kind.

        Returns None when the kind is unknown or its dependency check no
        longer passes.
        """
        impl = self._entries.get(kind)
        if impl is None:
            return None
        try:
            satisfied = impl.is_dependency_satisfied()
        except Exception as e:
            logger.warning("%s %r dependency check raised: %s", self.label, kind, e)
            return None
        if not satisfied:
            logger.debug("%s %r dependency no longer satisfied", self.label, kind)
            return None
        return impl

    def kinds(self) -> list[str]:
        return sorted(self._entries)

    def describe(self) -> list[dict[str, Any]]:
        """Summaries of every registered kind, for the admin UI."""
        return [self._entries[kind].describe() | {"kind": kind} for kind in self.kinds()]

    def __contains__(self, kind: object) -> bool:
        return kind in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _rejection_reason(self, implementation: Any) -> str | None:
        if not isinstance(implementation, self.capability):
            return (
                f"{type(implementation).__name__} does not implement "
                f"{self.capability.__name__}"
            )
        try:
            if not implementation.is_dependency_satisfied():
                return "dependency not satisfied"
        except Exception as e:
            return f"dependency check raised {type(e).__name__}: {e}"
        return None

    def _reject(self, kind: str, reason: str) -> None:
        logger.warning("Rejected %s %r: %s", self.label, kind, reason)
        if self._on_reject is not None:
            try:
                self._on_reject(self.label, kind, reason)
            except Exception as e:
                logger.debug("Reject hook failed: %s", e)


class TriggerRegistry(Registry[Trigger]):
    capability = Trigger
    label = "trigger"


class NotifierRegistry(Registry[Notifier]):
    capability = Notifier
    label = "notifier"
