"""Tests for AlertDispatcher: dedup, isolation, timeouts and hooks."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.alerts.config import AlertsConfig
from src.alerts.dedup import InMemoryDedupTracker
from src.alerts.dispatcher import AlertDispatcher
from src.alerts.errors import StorageUnavailableError
from src.alerts.notifiers import Notifier
from src.alerts.registry import NotifierRegistry
from src.alerts.schemas import DispatchOutcome


class RecordingNotifier(Notifier):
    """Notifier that records calls and returns a fixed result."""

    def __init__(self, kind: str = "recording", result: bool = True, delay: float = 0.0,
                 error: Exception | None = None):
        self._kind = kind
        self.result = result
        self.delay = delay
        self.error = error
        self.calls: list[tuple[str, dict]] = []

    @property
    def kind(self) -> str:
        return self._kind

    async def notify(self, record, config) -> bool:
        self.calls.append((record.record_id, dict(config)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def _registry(*notifiers: Notifier) -> NotifierRegistry:
    registry = NotifierRegistry()
    registry.register_all(list(notifiers))
    return registry


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dedup():
    return InMemoryDedupTracker()


@pytest.fixture
def dispatcher(notifier, dedup, alerts_config):
    return AlertDispatcher(_registry(notifier), dedup, config=alerts_config)


class TestDispatch:
    """Single (alert, record) pairs."""

    @pytest.mark.asyncio
    async def test_delivered(self, dispatcher, notifier, dedup, sample_record, alert_factory):
        alert = alert_factory(notification_kind="recording", notification_config={"k": "v"})
        result = await dispatcher.dispatch(alert, sample_record)

        assert result.outcome is DispatchOutcome.DELIVERED
        assert result.alert_id == "alert-1"
        assert result.record_id == "1001"
        assert notifier.calls == [("1001", {"k": "v"})]
        assert await dedup.already_fired("alert-1", "1001")

    @pytest.mark.asyncio
    async def test_second_dispatch_is_duplicate(self, dispatcher, notifier, sample_record, alert_factory):
        alert = alert_factory(notification_kind="recording")
        await dispatcher.dispatch(alert, sample_record)
        result = await dispatcher.dispatch(alert, sample_record)

        assert result.outcome is DispatchOutcome.DUPLICATE
        assert len(notifier.calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_notifies_once(self, dedup, alerts_config, sample_record, alert_factory):
        slow = RecordingNotifier(delay=0.05)
        dispatcher = AlertDispatcher(_registry(slow), dedup, config=alerts_config)
        alert = alert_factory(notification_kind="recording")

        results = await asyncio.gather(
            *(dispatcher.dispatch(alert, sample_record) for _ in range(5))
        )

        outcomes = [r.outcome for r in results]
        assert outcomes.count(DispatchOutcome.DELIVERED) == 1
        assert outcomes.count(DispatchOutcome.DUPLICATE) == 4
        assert len(slow.calls) == 1

    @pytest.mark.asyncio
    async def test_claim_lost(self, notifier, alerts_config, sample_record, alert_factory):
        dedup = AsyncMock()
        dedup.already_fired.return_value = False
        dedup.mark_fired.return_value = False
        dispatcher = AlertDispatcher(_registry(notifier), dedup, config=alerts_config)

        result = await dispatcher.dispatch(alert_factory(notification_kind="recording"), sample_record)

        assert result.outcome is DispatchOutcome.DUPLICATE
        assert result.detail == "claim lost"
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_failed_delivery_is_not_retried(self, dedup, alerts_config, sample_record, alert_factory):
        failing = RecordingNotifier(result=False)
        dispatcher = AlertDispatcher(_registry(failing), dedup, config=alerts_config)
        alert = alert_factory(notification_kind="recording")

        first = await dispatcher.dispatch(alert, sample_record)
        second = await dispatcher.dispatch(alert, sample_record)

        assert first.outcome is DispatchOutcome.FAILED
        assert second.outcome is DispatchOutcome.DUPLICATE
        assert len(failing.calls) == 1

    @pytest.mark.asyncio
    async def test_notifier_exception_is_failure(self, dedup, alerts_config, sample_record, alert_factory):
        raising = RecordingNotifier(error=RuntimeError("smtp exploded"))
        dispatcher = AlertDispatcher(_registry(raising), dedup, config=alerts_config)

        result = await dispatcher.dispatch(alert_factory(notification_kind="recording"), sample_record)

        assert result.outcome is DispatchOutcome.FAILED
        assert "smtp exploded" in result.detail

    @pytest.mark.asyncio
    async def test_timeout(self, dedup, sample_record, alert_factory):
        slow = RecordingNotifier(delay=1.0)
        config = AlertsConfig(notify_timeout_seconds=0.05)
        dispatcher = AlertDispatcher(_registry(slow), dedup, config=config)

        result = await dispatcher.dispatch(alert_factory(notification_kind="recording"), sample_record)

        assert result.outcome is DispatchOutcome.TIMED_OUT
        assert await dedup.already_fired("alert-1", "1001")


class TestUnavailableNotifier:
    """Alerts whose notification kind does not resolve."""

    @pytest.mark.asyncio
    async def test_retry_later_leaves_pair_unmarked(self, dedup, sample_record, alert_factory):
        dispatcher = AlertDispatcher(
            NotifierRegistry(), dedup, config=AlertsConfig(unavailable_notifier_policy="retry_later"),
        )
        result = await dispatcher.dispatch(alert_factory(notification_kind="sms"), sample_record)

        assert result.outcome is DispatchOutcome.NOTIFIER_UNAVAILABLE
        assert not await dedup.already_fired("alert-1", "1001")

    @pytest.mark.asyncio
    async def test_skip_marks_pair(self, dedup, sample_record, alert_factory):
        dispatcher = AlertDispatcher(
            NotifierRegistry(), dedup, config=AlertsConfig(unavailable_notifier_policy="skip"),
        )
        result = await dispatcher.dispatch(alert_factory(notification_kind="sms"), sample_record)

        assert result.outcome is DispatchOutcome.NOTIFIER_UNAVAILABLE
        assert await dedup.already_fired("alert-1", "1001")

    @pytest.mark.asyncio
    async def test_retry_later_fires_once_notifier_returns(self, dedup, alerts_config, sample_record, alert_factory):
        registry = NotifierRegistry()
        dispatcher = AlertDispatcher(registry, dedup, config=alerts_config)
        alert = alert_factory(notification_kind="recording")

        first = await dispatcher.dispatch(alert, sample_record)
        registry.register("recording", RecordingNotifier())
        second = await dispatcher.dispatch(alert, sample_record)

        assert first.outcome is DispatchOutcome.NOTIFIER_UNAVAILABLE
        assert second.outcome is DispatchOutcome.DELIVERED


class TestDispatchAll:
    """Fan-out over every matched alert of one record."""

    @pytest.mark.asyncio
    async def test_failure_isolated(self, dedup, alerts_config, sample_record, alert_factory):
        good = RecordingNotifier(kind="good")
        bad = RecordingNotifier(kind="bad", error=RuntimeError("down"))
        dispatcher = AlertDispatcher(_registry(good, bad), dedup, config=alerts_config)

        results = await dispatcher.dispatch_all(
            [
                alert_factory("a1", notification_kind="bad"),
                alert_factory("a2", notification_kind="good"),
            ],
            sample_record,
        )

        assert [r.alert_id for r in results] == ["a1", "a2"]
        assert results[0].outcome is DispatchOutcome.FAILED
        assert results[1].outcome is DispatchOutcome.DELIVERED

    @pytest.mark.asyncio
    async def test_cancelled_claimed_attempt_still_reported(self, dedup, sample_record, alert_factory):
        slow = RecordingNotifier(delay=5.0)
        hook = MagicMock()
        metrics = MagicMock()
        dispatcher = AlertDispatcher(
            _registry(slow), dedup, config=AlertsConfig(notify_timeout_seconds=10.0),
            metrics=metrics, hooks=[hook],
        )

        task = asyncio.create_task(
            dispatcher.dispatch_all([alert_factory("a1", notification_kind="recording")], sample_record)
        )
        while not slow.calls:
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        result, = [c.args[0] for c in hook.call_args_list]
        assert result.alert_id == "a1"
        assert result.outcome is DispatchOutcome.TIMED_OUT
        assert result.detail == "evaluation cancelled"
        assert metrics.record_dispatch.call_args[0][:2] == ("recording", "timed_out")
        assert await dedup.already_fired("a1", "1001")

    @pytest.mark.asyncio
    async def test_respects_concurrency_limit(self, dedup, sample_record, alert_factory):
        running = 0
        peak = 0

        class CountingNotifier(RecordingNotifier):
            async def notify(self, record, config):
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                running -= 1
                return True

        config = AlertsConfig(dispatch_concurrency=2)
        dispatcher = AlertDispatcher(_registry(CountingNotifier()), dedup, config=config)
        alerts = [alert_factory(f"a{i}", notification_kind="recording") for i in range(6)]

        results = await dispatcher.dispatch_all(alerts, sample_record)

        assert len(results) == 6
        assert peak <= 2

    @pytest.mark.asyncio
    async def test_storage_error_raised_after_siblings_settle(self, notifier, alerts_config, sample_record, alert_factory):
        dedup = AsyncMock()
        dedup.already_fired.return_value = False

        async def mark(alert_id, record_id):
            if alert_id == "broken":
                raise StorageUnavailableError("marker table gone")
            return True

        dedup.mark_fired.side_effect = mark
        dispatcher = AlertDispatcher(_registry(notifier), dedup, config=alerts_config)

        with pytest.raises(StorageUnavailableError):
            await dispatcher.dispatch_all(
                [
                    alert_factory("broken", notification_kind="recording"),
                    alert_factory("ok", notification_kind="recording"),
                ],
                sample_record,
            )

        assert len(notifier.calls) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_result(self, notifier, alerts_config, sample_record, alert_factory):
        dedup = AsyncMock()
        dedup.already_fired.side_effect = KeyError("weird")
        dispatcher = AlertDispatcher(_registry(notifier), dedup, config=alerts_config)

        results = await dispatcher.dispatch_all(
            [alert_factory(notification_kind="recording")], sample_record,
        )

        assert results[0].outcome is DispatchOutcome.FAILED
        assert "KeyError" in results[0].detail

    @pytest.mark.asyncio
    async def test_accepts_iterator(self, dispatcher, sample_record, alert_factory):
        alerts = iter([alert_factory("a1", notification_kind="recording")])
        results = await dispatcher.dispatch_all(alerts, sample_record)
        assert len(results) == 1


class TestObservers:
    """Hooks and metrics see every attempt."""

    @pytest.mark.asyncio
    async def test_hooks_receive_results(self, dispatcher, sample_record, alert_factory):
        seen = []
        dispatcher.add_hook(seen.append)

        await dispatcher.dispatch(alert_factory(notification_kind="recording"), sample_record)
        await dispatcher.dispatch(alert_factory(notification_kind="recording"), sample_record)

        assert [r.outcome for r in seen] == [DispatchOutcome.DELIVERED, DispatchOutcome.DUPLICATE]

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_break_dispatch(self, notifier, dedup, alerts_config, sample_record, alert_factory):
        dispatcher = AlertDispatcher(
            _registry(notifier), dedup, config=alerts_config,
            hooks=[MagicMock(side_effect=RuntimeError("hook bug"))],
        )
        result = await dispatcher.dispatch(alert_factory(notification_kind="recording"), sample_record)
        assert result.outcome is DispatchOutcome.DELIVERED

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, notifier, dedup, alerts_config, sample_record, alert_factory):
        metrics = MagicMock()
        dispatcher = AlertDispatcher(_registry(notifier), dedup, config=alerts_config, metrics=metrics)

        await dispatcher.dispatch(alert_factory(notification_kind="recording"), sample_record)
        await dispatcher.dispatch(alert_factory(notification_kind="recording"), sample_record)

        first, second = metrics.record_dispatch.call_args_list
        assert first.args == ("recording", "delivered")
        assert first.kwargs["latency"] is not None
        assert second.args == ("recording", "duplicate")
        assert second.kwargs["latency"] is None
