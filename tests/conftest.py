"""Shared fixtures for the canvas sync tests."""

import pytest

from canvas_sync.app.core.events import EventBus
from canvas_sync.app.core.scheduler import Scheduler
from canvas_sync.app.services.oracles import OwnershipRegistry
from canvas_sync.app.services.sync import SyncEngine
from tests.fakes import (
    TEST_DEBOUNCE,
    EventRecorder,
    FakeTransport,
    ManualClock,
    RecordingStore,
)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def recorder(event_bus):
    return EventRecorder(event_bus)


@pytest.fixture
def scheduler():
    return Scheduler()


@pytest.fixture
def registry():
    return OwnershipRegistry()


@pytest.fixture
def make_engine(transport, store, event_bus, scheduler, clock, registry):
    """Build a SyncEngine on the shared fakes; keyword arguments override."""

    def _make(**overrides) -> SyncEngine:
        options = dict(
            event_bus=event_bus,
            ownership_registry=registry,
            scheduler=scheduler,
            clock=clock,
            memory_ttl=60.0,
            debounce_delays=TEST_DEBOUNCE,
            key_prefix="test",
        )
        options.update(overrides)
        return SyncEngine(transport, store, **options)

    return _make
