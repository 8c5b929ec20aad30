"""Pytest configuration and fixtures for unit tests."""

import pytest

from src.services.negotiation_service import NegotiationService
from tests.unit.mocks import FixedClock, InMemoryTaskRepository, RecordingNotificationSink


@pytest.fixture
def repository() -> InMemoryTaskRepository:
    """Provides a fresh InMemoryTaskRepository for each test."""
    return InMemoryTaskRepository()


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def clock(now) -> FixedClock:
    return FixedClock(now)


@pytest.fixture
def service(repository, sink, clock, engine, test_settings) -> NegotiationService:
    return NegotiationService(
        repository=repository,
        notifier=sink,
        clock=clock,
        engine=engine,
        settings=test_settings,
    )
