"""Exceptions raised by the alerts package."""


class AlertsError(Exception):
    """Base exception for alert matching and dispatch errors."""


class RegistrationError(AlertsError):
    """Raised when a trigger or notifier cannot be registered."""

    def __init__(self, kind: str, reason: str):
        super().__init__(f"Cannot register {kind!r}: {reason}")
        self.kind = kind
        self.reason = reason


class FilterError(AlertsError):
    """Raised when an alert's trigger filters are malformed."""


class StorageUnavailableError(AlertsError):
    """Raised when alert definitions or dispatch markers cannot be read or written.

    Fatal to the current evaluation pass: continuing would risk silent rule
    non-enforcement or duplicate notifications.
    """


class AlertNotFoundError(AlertsError):
    """Raised when a lifecycle operation targets an unknown alert."""

    def __init__(self, alert_id: str):
        super().__init__(f"Alert {alert_id!r} not found")
        self.alert_id = alert_id
