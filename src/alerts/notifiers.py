"""Notifier implementations delivering matched records.

Provides an ABC for notifiers plus the built-in kinds: ``none``,
``highlight``, ``email``, ``webhook`` and ``ifttt``. A notifier returns
True when delivery succeeded and False when it failed; transport errors are
logged and reported as False rather than raised. Notifiers never retry;
the dispatcher applies the timeout and records the attempt.

Each notifier declares ``is_dependency_satisfied()`` so one that lacks its
transport (no SMTP host, no highlight store) is rejected at registration
instead of failing at dispatch time.
"""

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from collections.abc import Mapping
from email.message import EmailMessage
from typing import Any, Protocol

import httpx

from src.alerts.schemas import Record

logger = logging.getLogger(__name__)

HIGHLIGHT_COLORS: frozenset[str] = frozenset({"yellow", "red", "green", "blue"})
DEFAULT_HIGHLIGHT_COLOR = "yellow"

IFTTT_URL_TEMPLATE = "https://maker.ifttt.com/trigger/{event_name}/with/key/{maker_key}"

DEFAULT_EMAIL_SUBJECT = "[Alert] {summary}"


class Notifier(ABC):
    """Abstract base for notification kinds."""

    @property
    @abstractmethod
    def kind(self) -> str:
        """Registry identifier (e.g. 'email', 'webhook')."""

    @property
    def name(self) -> str:
        """Human-readable label for the admin UI."""
        return self.kind.replace("_", " ").title()

    @property
    def config_fields(self) -> tuple[str, ...]:
        """notification_config keys this notifier reads."""
        return ()

    @abstractmethod
    async def notify(self, record: Record, config: Mapping[str, Any]) -> bool:
        """Deliver a notification for a matched record.

        Args:
            record: Record that matched the alert.
            config: The alert's notification_config.

        Returns:
            True if delivery succeeded, False otherwise.
        """

    def is_dependency_satisfied(self) -> bool:
        """Whether the notifier's transport or credentials are available."""
        return True

    def describe(self) -> dict[str, Any]:
        """Kind summary for listing available notifiers."""
        return {
            "kind": self.kind,
            "name": self.name,
            "fields": list(self.config_fields),
        }


def _format_template(template: str, record: Record) -> str:
    """Substitute record fields into a user-supplied template.

    Unknown placeholders are left as-is instead of raising.
    """
    values = {
        "record_id": record.record_id,
        "author_id": record.author_id,
        "connector": record.connector,
        "context": record.context,
        "action": record.action,
        "summary": record.summary or f"{record.connector}/{record.context} {record.action}",
        "created": record.created.isoformat(),
    }

    class _Defaults(dict):
        def __missing__(self, key: str) -> str:
            return "{" + key + "}"

    try:
        return template.format_map(_Defaults(values))
    except (ValueError, IndexError):
        return template


class NoneNotifier(Notifier):
    """Matches are recorded but nobody is told."""

    @property
    def kind(self) -> str:
        return "none"

    @property
    def name(self) -> str:
        return "No Alert"

    async def notify(self, record: Record, config: Mapping[str, Any]) -> bool:
        return True


class HighlightStore(Protocol):
    """Persistence used by the highlight notifier."""

    async def highlight(self, record_id: str, color: str) -> None: ...


class HighlightNotifier(Notifier):
    """Flags the record with a colour so the records list can highlight it."""

    def __init__(self, store: HighlightStore | None) -> None:
        self._store = store

    @property
    def kind(self) -> str:
        return "highlight"

    @property
    def name(self) -> str:
        return "Highlight"

    @property
    def config_fields(self) -> tuple[str, ...]:
        return ("color",)

    def is_dependency_satisfied(self) -> bool:
        return self._store is not None

    async def notify(self, record: Record, config: Mapping[str, Any]) -> bool:
        color = config.get("color") or DEFAULT_HIGHLIGHT_COLOR
        if color not in HIGHLIGHT_COLORS:
            logger.warning(
                "Unknown highlight color %r for record %s, using %s",
                color, record.record_id, DEFAULT_HIGHLIGHT_COLOR,
            )
            color = DEFAULT_HIGHLIGHT_COLOR

        try:
            await self._store.highlight(record.record_id, color)
            return True
        except Exception as e:
            logger.warning(
                "Highlight failed for record %s: %s", record.record_id, e,
            )
            return False


class EmailNotifier(Notifier):
    """Sends a plain-text email over SMTP.

    ``smtplib`` is blocking, so the send runs in a worker thread. A thread
    cannot be cancelled: when the dispatcher's notify timeout fires first,
    the send may still complete and the attempt is reported ``timed_out``.
    Each socket operation is bounded by ``timeout``, which is capped at the
    notify timeout by ``builtin_notifiers``.
    """

    def __init__(
        self,
        host: str | None,
        from_address: str | None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._from_address = from_address
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    @property
    def kind(self) -> str:
        return "email"

    @property
    def name(self) -> str:
        return "Email"

    @property
    def config_fields(self) -> tuple[str, ...]:
        return ("recipient", "subject")

    def is_dependency_satisfied(self) -> bool:
        return bool(self._host) and bool(self._from_address)

    def _build_message(self, record: Record, config: Mapping[str, Any]) -> EmailMessage | None:
        recipients = _split_recipients(config.get("recipient"))
        if not recipients:
            return None

        subject = _format_template(
            config.get("subject") or DEFAULT_EMAIL_SUBJECT, record,
        )
        # Header values may not contain CR/LF; summaries often span lines.
        subject = " ".join(line.strip() for line in subject.splitlines() if line.strip())

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._from_address
        msg["To"] = ", ".join(recipients)
        msg.set_content(
            f"{record.summary}\n\n"
            f"Author: {record.author_id}\n"
            f"Connector: {record.connector}\n"
            f"Context: {record.context}\n"
            f"Action: {record.action}\n"
            f"Date: {record.created.isoformat()}\n"
            f"Record: {record.record_id}\n"
        )
        return msg

    def _send(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._use_tls:
                server.starttls()
            if self._username and self._password:
                server.login(self._username, self._password)
            server.send_message(msg)

    async def notify(self, record: Record, config: Mapping[str, Any]) -> bool:
        msg = self._build_message(record, config)
        if msg is None:
            logger.warning(
                "Email alert for record %s has no recipient", record.record_id,
            )
            return False

        try:
            await asyncio.to_thread(self._send, msg)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(
                "Email to %s failed for record %s: %s",
                msg["To"], record.record_id, e,
            )
            return False


def _split_recipients(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = [str(v) for v in value]
    return [p.strip() for p in parts if p.strip()]


class WebhookNotifier(Notifier):
    """Delivers the record as a JSON POST to an arbitrary HTTP endpoint.

    Creates a new ``httpx.AsyncClient`` per call (short-lived, no pooling).
    """

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout

    @property
    def kind(self) -> str:
        return "webhook"

    @property
    def name(self) -> str:
        return "Webhook"

    @property
    def config_fields(self) -> tuple[str, ...]:
        return ("url", "headers")

    def _build_payload(self, record: Record) -> dict:
        return {
            "event": "activity_alert",
            "record": record.to_dict(),
        }

    async def notify(self, record: Record, config: Mapping[str, Any]) -> bool:
        url = config.get("url")
        if not url:
            logger.warning("Webhook alert for record %s has no url", record.record_id)
            return False

        headers = config.get("headers") or {}
        return await _post_json(
            url, self._build_payload(record), headers, self._timeout,
            label=url, record_id=record.record_id,
        )


class IftttNotifier(Notifier):
    """Fires an IFTTT Maker webhook event.

    Sends ``value1`` = summary, ``value2`` = author, ``value3`` = date.
    """

    def __init__(self, default_maker_key: str | None = None, timeout: float = 10.0) -> None:
        self._default_maker_key = default_maker_key
        self._timeout = timeout

    @property
    def kind(self) -> str:
        return "ifttt"

    @property
    def name(self) -> str:
        return "IFTTT"

    @property
    def config_fields(self) -> tuple[str, ...]:
        return ("maker_key", "event_name")

    def _build_url(self, config: Mapping[str, Any]) -> str | None:
        maker_key = config.get("maker_key") or self._default_maker_key
        event_name = config.get("event_name")
        if not maker_key or not event_name:
            return None
        return IFTTT_URL_TEMPLATE.format(event_name=event_name, maker_key=maker_key)

    def _build_payload(self, record: Record) -> dict:
        return {
            "value1": record.summary,
            "value2": record.author_id,
            "value3": record.created.isoformat(),
        }

    async def notify(self, record: Record, config: Mapping[str, Any]) -> bool:
        url = self._build_url(config)
        if url is None:
            logger.warning(
                "IFTTT alert for record %s is missing maker_key or event_name",
                record.record_id,
            )
            return False

        # The URL embeds the maker key, so it is never logged.
        return await _post_json(
            url, self._build_payload(record), {}, self._timeout,
            label=f"IFTTT event {config.get('event_name')}",
            record_id=record.record_id,
        )


async def _post_json(
    url: str,
    payload: dict,
    headers: Mapping[str, str],
    timeout: float,
    *,
    label: str,
    record_id: str,
) -> bool:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(url, json=payload, headers=dict(headers))
            if resp.is_success:
                return True
            logger.warning(
                "%s returned %d for record %s",
                label, resp.status_code, record_id,
            )
            return False
    except httpx.TimeoutException:
        logger.warning("%s timed out for record %s", label, record_id)
        return False
    except httpx.HTTPError as e:
        logger.warning("%s failed for record %s: %s", label, record_id, e)
        return False
