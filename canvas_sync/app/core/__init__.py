"""Core utilities for the canvas sync core."""

from canvas_sync.app.core.cache import (
    InMemoryStore,
    PersistentStore,
    RedisStore,
    create_store,
)
from canvas_sync.app.core.config import Settings, settings
from canvas_sync.app.core.events import EventBus, Events
from canvas_sync.app.core.logging import get_logger, setup_logging
from canvas_sync.app.core.scheduler import Clock, ScheduledTask, Scheduler

__all__ = [
    "PersistentStore",
    "InMemoryStore",
    "RedisStore",
    "create_store",
    "Settings",
    "settings",
    "EventBus",
    "Events",
    "get_logger",
    "setup_logging",
    "Clock",
    "ScheduledTask",
    "Scheduler",
]
