"""Notification sinks for negotiation events.

Delivery is fire-and-forget: a failing sink is logged and skipped, and the
transition that produced the event is never rolled back.
"""

import logging
from collections.abc import Iterable, Sequence

from src.core.logging import span
from src.core.ports import NotificationSink
from src.domain.event import NegotiationEvent
from src.models.service_models import NotificationResult


logger = logging.getLogger(__name__)


class LoggingNotificationSink:
    """Writes every event to the log (and so to Logfire when configured)."""

    name = "log"

    async def publish(self, event: NegotiationEvent) -> None:
        logger.info(
            "Negotiation event %s for task %s",
            event.kind,
            event.task_id,
            extra={
                "event_id": event.id,
                "event_kind": event.kind.value,
                "task_id": event.task_id,
                "actor_role": event.actor.role.value,
                "actor_id": event.actor.id,
            },
        )


def _sink_name(sink: NotificationSink) -> str:
    return getattr(sink, "name", type(sink).__name__)


class FanOutNotificationSink:
    """Publishes each event to several sinks, isolating their failures from each other."""

    name = "fan_out"

    def __init__(self, sinks: Sequence[NotificationSink]) -> None:
        self.sinks = list(sinks)

    async def publish(self, event: NegotiationEvent) -> None:
        await self.publish_all(event)

    async def publish_all(self, event: NegotiationEvent) -> list[NotificationResult]:
        """Publish to every sink and report per-sink delivery status."""
        results = []
        for sink in self.sinks:
            results.append(await _deliver(sink, event))
        return results


async def _deliver(sink: NotificationSink, event: NegotiationEvent) -> NotificationResult:
    name = _sink_name(sink)
    try:
        await sink.publish(event)
    except Exception as e:
        logger.error(
            "Failed to publish event %s to sink %s: %s",
            event.id,
            name,
            e,
            extra={"event_id": event.id, "task_id": event.task_id, "sink": name},
        )
        return NotificationResult(event_id=event.id, sink=name, success=False, error=str(e))
    return NotificationResult(event_id=event.id, sink=name, success=True)


async def dispatch_events(sink: NotificationSink, events: Iterable[NegotiationEvent]) -> list[NotificationResult]:
    """Publish events in order to one sink. Never raises for delivery failures.

    Args:
        sink: Destination for the events
        events: Events returned by a successful negotiation operation

    Returns:
        One NotificationResult per event
    """
    with span("notification_service.dispatch_events"):
        results = [await _deliver(sink, event) for event in events]

        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.warning("Dispatched %d events (%d failed)", len(results), failed)
        return results
