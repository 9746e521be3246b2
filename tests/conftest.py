"""Shared fixtures: clock, in-memory store, event channel and complaint service."""

from __future__ import annotations

import pytest

from src.services.cache import CacheManager
from src.services.complaints import ComplaintService
from src.services.eligibility import EligibilityRules
from src.services.notifications import EventChannel
from src.services.paging import PagedQueryEngine
from src.services.stats import StatsAggregator
from src.services.store import InMemoryDocumentStore
from src.services.triage import TriageService
from tests.factories import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel(maxsize=100)


@pytest.fixture
def service(store: InMemoryDocumentStore, clock: FakeClock, channel: EventChannel) -> ComplaintService:
    return ComplaintService(
        store,
        rules=EligibilityRules(clock=clock),
        engine=PagedQueryEngine(store, page_size=10),
        stats=StatsAggregator(store, CacheManager(namespace="test:"), ttl_seconds=30),
        triage=TriageService(project_id=""),
        channel=channel,
    )
