"""
Services for the health signal engine.

This package contains the bucketizer, snapshot builder, advisory engine,
staged delivery scheduler, sleep timer and the composing advisor service.
"""

from .advisory_engine import AdvisoryEngine, AdvisoryRule, RuleFamily
from .bucketizer import build_trend, bucketize
from .delivery_scheduler import SchedulerState, StagedDeliveryScheduler
from .event_store import EventCategory, EventStore, InMemoryEventStore, Result
from .health_advisor import HealthAdvisorService
from .health_score import compute_health_score
from .sleep_timer import (
    AlreadyActiveError,
    NonPositiveDurationError,
    NotActiveError,
    SleepTimer,
    SleepTimerError,
)
from .snapshot_builder import SnapshotBuilder, build_snapshot

__all__ = [
    "AdvisoryEngine",
    "AdvisoryRule",
    "RuleFamily",
    "bucketize",
    "build_trend",
    "SchedulerState",
    "StagedDeliveryScheduler",
    "EventCategory",
    "EventStore",
    "InMemoryEventStore",
    "Result",
    "HealthAdvisorService",
    "compute_health_score",
    "SleepTimer",
    "SleepTimerError",
    "AlreadyActiveError",
    "NotActiveError",
    "NonPositiveDurationError",
    "SnapshotBuilder",
    "build_snapshot",
]
