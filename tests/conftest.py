"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta

import logfire
import pytest

from src.core.config import Settings
from src.domain import Actor, ActorRole, TaskRecord, TaskStatus
from src.services.negotiation_engine import NegotiationEngine
from tests.factories import NOW, dzd, make_task


# Keep spans local during tests
logfire.configure(send_to_logfire=False, console=False)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def engine(test_settings) -> NegotiationEngine:
    return NegotiationEngine(settings=test_settings)


@pytest.fixture
def requester() -> Actor:
    return Actor(role=ActorRole.REQUESTER, id="user-1")


@pytest.fixture
def agent() -> Actor:
    return Actor(role=ActorRole.AGENT, id="agent-7")


@pytest.fixture
def pending_task() -> TaskRecord:
    return make_task()


@pytest.fixture
def review_task() -> TaskRecord:
    return make_task(status=TaskStatus.COST_REVIEW, reviewer_id="agent-7")


@pytest.fixture
def proposed_task() -> TaskRecord:
    return make_task(
        status=TaskStatus.COST_PROPOSED,
        reviewer_id="agent-7",
        proposed_cost=dzd(1500),
        cost_notes="Two stops",
        cost_proposed_at=NOW - timedelta(minutes=30),
    )
