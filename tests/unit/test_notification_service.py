"""Unit tests for notification sinks and event dispatch."""

import logging

import pytest

from src.domain import Actor, ActorRole, NegotiationEvent, NegotiationEventKind
from src.services.notification_service import FanOutNotificationSink, LoggingNotificationSink, dispatch_events
from tests.factories import NOW
from tests.unit.mocks import FailingNotificationSink, RecordingNotificationSink


def make_event(kind: NegotiationEventKind = NegotiationEventKind.COST_PROPOSED) -> NegotiationEvent:
    return NegotiationEvent.build(
        kind=kind,
        task_id="task-1",
        task_version=3,
        actor=Actor(role=ActorRole.AGENT, id="agent-7"),
        timestamp=NOW,
        payload={"cost": {"amount": 1500, "currency": "DZD"}},
    )


class BareSink:
    """Sink without a `name` attribute."""

    async def publish(self, event: NegotiationEvent) -> None:
        pass


@pytest.mark.unit
class TestLoggingNotificationSink:
    @pytest.mark.asyncio
    async def test_logs_event(self, caplog):
        """Test that each event is logged with task and actor attributes."""
        caplog.set_level(logging.INFO, logger="src.services.notification_service")

        await LoggingNotificationSink().publish(make_event())

        record = caplog.records[-1]
        assert "cost_proposed" in record.getMessage()
        assert record.task_id == "task-1"
        assert record.actor_role == "agent"


@pytest.mark.unit
class TestFanOutNotificationSink:
    """Test suite for fan-out delivery."""

    @pytest.mark.asyncio
    async def test_isolates_failing_sink(self):
        """Test that one failing sink does not stop delivery to the others."""
        failing = FailingNotificationSink()
        recording = RecordingNotificationSink()
        fan_out = FanOutNotificationSink([failing, recording])
        event = make_event()

        results = await fan_out.publish_all(event)

        assert [r.success for r in results] == [False, True]
        assert results[0].sink == "failing"
        assert "unreachable" in results[0].error
        assert recording.events == [event]

    @pytest.mark.asyncio
    async def test_publish_never_raises(self):
        fan_out = FanOutNotificationSink([FailingNotificationSink()])

        await fan_out.publish(make_event())


@pytest.mark.unit
class TestDispatchEvents:
    @pytest.mark.asyncio
    async def test_publishes_in_order(self):
        """Test that events reach the sink in emission order."""
        sink = RecordingNotificationSink()
        events = [make_event(NegotiationEventKind.COST_PROPOSED), make_event(NegotiationEventKind.COST_ACCEPTED)]

        results = await dispatch_events(sink, events)

        assert sink.events == events
        assert all(r.success for r in results)
        assert [r.event_id for r in results] == [e.id for e in events]

    @pytest.mark.asyncio
    async def test_reports_failures(self, caplog):
        """Test that failures are reported per event and summarized in the log."""
        caplog.set_level(logging.WARNING, logger="src.services.notification_service")
        sink = FailingNotificationSink()

        results = await dispatch_events(sink, [make_event(), make_event(NegotiationEventKind.TASK_ASSIGNED)])

        assert sink.attempts == 2
        assert not any(r.success for r in results)
        assert "2 failed" in caplog.text

    @pytest.mark.asyncio
    async def test_sink_name_defaults_to_class_name(self):
        results = await dispatch_events(BareSink(), [make_event()])

        assert results[0].sink == "BareSink"

    @pytest.mark.asyncio
    async def test_no_events(self):
        assert await dispatch_events(RecordingNotificationSink(), []) == []
