"""Shared fixtures for Ember tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from ember.src.clock import ManualClock
from ember.src.config import PromptConfig
from ember.src.models import Engagement, EngagementStatus, InitiatorContext
from ember.src.providers import InMemoryEngagementStore, RecordingPresentationSink
from ember.src.storage import InMemoryKeyValueStore, PersistenceError

NOW = datetime(2025, 11, 30, 12, 0, tzinfo=timezone.utc)


class FailingKeyValueStore:
    """Key-value store whose every operation fails."""

    def _fail(self, *args, **kwargs):
        raise PersistenceError("disk unavailable")

    get_date = set_date = _fail
    get_string_set = set_string_set = _fail
    get_bool = set_bool = _fail
    remove = _fail


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for deterministic tests."""
    return NOW


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock starting at the reference time."""
    return ManualClock(NOW)


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    """Empty in-memory key-value store."""
    return InMemoryKeyValueStore()


@pytest.fixture
def failing_store() -> FailingKeyValueStore:
    """Key-value store that raises PersistenceError on every call."""
    return FailingKeyValueStore()


@pytest.fixture
def config() -> PromptConfig:
    """Default production configuration."""
    return PromptConfig()


@pytest.fixture
def make_engagement() -> Callable[..., Engagement]:
    """Factory for engagements ending a given number of days before NOW.

    Engagements are completed and two hours long unless overridden.
    """

    def _make(
        engagement_id: str,
        *,
        ended_days_ago: float = 1,
        status: EngagementStatus = EngagementStatus.COMPLETED,
        reviewed: bool = False,
        hours: float = 2,
        title: str = "",
    ) -> Engagement:
        ends_at = NOW - timedelta(days=ended_days_ago)
        return Engagement(
            id=engagement_id,
            starts_at=ends_at - timedelta(hours=hours),
            ends_at=ends_at,
            status=status,
            title=title,
            owner_reviewed_at=ends_at + timedelta(hours=1) if reviewed else None,
            household_id="nest_1",
        )

    return _make


@pytest.fixture
def initiator() -> InitiatorContext:
    """An active initiator context."""
    return InitiatorContext(household_id="nest_1", name="The Parkers")


@pytest.fixture
def sink() -> RecordingPresentationSink:
    """Sink that records presented candidates."""
    return RecordingPresentationSink()


@pytest.fixture
def scenario_store(make_engagement, initiator) -> InMemoryEngagementStore:
    """Initiator store with one unreviewed (s1) and one reviewed (s2) engagement."""
    return InMemoryEngagementStore(
        [
            make_engagement("s1", ended_days_ago=10),
            make_engagement("s2", ended_days_ago=1, reviewed=True),
        ],
        initiator=initiator,
    )
