"""Unit tests for negotiation events."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from src.domain import Actor, ActorRole, NegotiationEvent, NegotiationEventKind
from tests.factories import NOW


def make_event(**overrides) -> NegotiationEvent:
    data = {
        "kind": NegotiationEventKind.COST_PROPOSED,
        "task_id": "task-1",
        "task_version": 2,
        "actor": Actor(role=ActorRole.AGENT, id="agent-7"),
        "timestamp": NOW,
        "payload": {"cost": {"amount": 1500, "currency": "DZD"}, "stops": [0, 1]},
    }
    data.update(overrides)
    return NegotiationEvent.build(**data)


@pytest.mark.unit
class TestEventPayload:
    """The payload is part of the audit trail and cannot be edited."""

    def test_top_level_payload_is_read_only(self):
        """Test that adding or replacing payload keys raises."""
        event = make_event()

        with pytest.raises(TypeError):
            event.payload["cost"] = None
        with pytest.raises(TypeError):
            event.payload["extra"] = 1

    def test_nested_payload_is_read_only(self):
        """Test that nested mappings and lists are frozen as well."""
        event = make_event()

        with pytest.raises(TypeError):
            event.payload["cost"]["amount"] = 1
        assert event.payload["stops"] == (0, 1)

    def test_caller_dict_is_not_shared(self):
        """Test that mutating the dict passed in does not reach the event."""
        payload = {"note": "Ring twice"}
        event = make_event(payload=payload)

        payload["note"] = "Changed"

        assert event.payload["note"] == "Ring twice"

    def test_model_dump_gives_plain_containers(self):
        """Test that serialized events hold ordinary dicts and lists."""
        dumped = make_event().model_dump()

        assert dumped["payload"] == {"cost": {"amount": 1500, "currency": "DZD"}, "stops": [0, 1]}
        assert type(dumped["payload"]) is dict
        assert type(dumped["payload"]["cost"]) is dict

    def test_model_dump_json(self):
        assert '"amount":1500' in make_event().model_dump_json()

    def test_events_are_frozen(self):
        event = make_event()

        with pytest.raises(ValidationError):
            event.kind = NegotiationEventKind.COST_ACCEPTED


@pytest.mark.unit
class TestEventIdentity:
    def test_same_inputs_same_id(self):
        """Test that event ids depend only on their inputs."""
        assert make_event().id == make_event().id

    def test_version_changes_id(self):
        assert make_event().id != make_event(task_version=3).id

    def test_equal_instants_share_an_id(self):
        """Test that naive, UTC and offset forms of one instant give one id and timestamp."""
        offset = timezone(timedelta(hours=1))
        naive = make_event(timestamp=datetime(2026, 3, 1, 12, 0))
        shifted = make_event(timestamp=datetime(2026, 3, 1, 13, 0, tzinfo=offset))

        assert naive.id == make_event().id == shifted.id
        assert naive.timestamp == NOW
        assert shifted.timestamp.utcoffset() == timedelta(0)
