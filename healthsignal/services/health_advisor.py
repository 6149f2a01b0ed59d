"""
Composing service that wires storage collaborators to the pure core.

This is the layer that decides WHEN to recompute: every query reads the
current events through the EventStore, builds a fresh snapshot for the given
`now` and hands it to the pure services. It owns the only long-lived runtime
objects (the delivery scheduler and the sleep state repository).

Pipeline for the assistant:
1. Read events and profile
2. Build snapshot
3. Evaluate advisories
4. Reveal them one by one through the staged scheduler
"""

import asyncio
import random
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from adapters.storage.key_value import ProfileStore, SleepStateRepository
from healthsignal.config import AppConfig, get_config
from healthsignal.domain.models import (
    Advisory,
    HealthScore,
    HealthSnapshot,
    Reducer,
    SleepSession,
    SleepTimerState,
    TimestampedValue,
    TrendSeries,
    Window,
    ensure_aware,
)
from healthsignal.services.advisory_engine import AdvisoryEngine
from healthsignal.services.bucketizer import build_trend, start_of_day, total_between
from healthsignal.services.delivery_scheduler import Clock, StagedDeliveryScheduler
from healthsignal.services.event_store import EventCategory, EventStore, Result
from healthsignal.services.health_score import compute_health_score
from healthsignal.services.sleep_timer import SleepTimer, SleepTimerError, average_sleep
from healthsignal.services.snapshot_builder import SnapshotBuilder

logger = structlog.get_logger(__name__)


class HealthAdvisorService:
    """
    Entry point used by presentation code.

    Collaborators are injected so tests and demos can run fully in memory:
    - event_store: fluid, calorie, nutrition and sleep events
    - profile_store: biometric profile
    - sleep_state: persisted sleep timer start
    - clock: timer source for staged delivery (the running event loop by default)
    """

    def __init__(
        self,
        event_store: EventStore,
        profile_store: ProfileStore,
        sleep_state: SleepStateRepository,
        config: AppConfig | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or get_config()
        self.event_store = event_store
        self.profile_store = profile_store
        self.sleep_state = sleep_state
        self.logger = logger.bind(component="health_advisor")

        self.snapshot_builder = SnapshotBuilder(self.config.snapshot)
        self.advisory_engine = AdvisoryEngine(self.config.advisory)
        self.scheduler = StagedDeliveryScheduler(clock=clock, config=self.config.delivery, rng=rng)
        self.sleep_timer = SleepTimer()

    # Events

    def log_entry(
        self,
        category: EventCategory,
        value: float,
        timestamp: datetime,
        entry_id: str | None = None,
    ) -> TimestampedValue:
        """Append a new event and return it."""
        entry = TimestampedValue(
            id=entry_id or f"{category.value}-{uuid.uuid4().hex}",
            value=value,
            timestamp=timestamp,
        )
        self.event_store.append(category, entry)
        return entry

    def nutrition_total(self, now: datetime) -> float | None:
        """Kcal eaten since local midnight, or None when nothing was logged today."""
        now = ensure_aware(now)
        day_start = start_of_day(now)
        entries = self.event_store.entries(EventCategory.NUTRITION)
        if not any(day_start <= entry.timestamp <= now for entry in entries):
            return None
        return total_between(entries, day_start, now)

    # Derived views

    def snapshot(self, now: datetime) -> HealthSnapshot:
        return self.snapshot_builder.build(
            profile=self.profile_store.load(),
            sleep_sessions=self.event_store.sleep_sessions(),
            calorie_entries=self.event_store.entries(EventCategory.CALORIES),
            fluid_entries=self.event_store.entries(EventCategory.FLUID),
            nutrition_total=self.nutrition_total(now),
            now=now,
        )

    def recommendations(self, now: datetime) -> list[Advisory]:
        return self.advisory_engine.evaluate(self.snapshot(now))

    def health_score(self, now: datetime) -> HealthScore:
        return compute_health_score(self.snapshot(now), self.config.advisory)

    def trend(
        self,
        category: EventCategory,
        window: Window,
        now: datetime,
        reducer: Reducer | None = None,
    ) -> TrendSeries:
        """Chart series for one event category."""
        return build_trend(
            self.event_store.entries(category),
            window,
            now,
            reducer,
            monthly_span_days=self.config.trend.monthly_span_days,
        )

    def sleep_trend(
        self, window: Window, now: datetime, reducer: Reducer | None = None
    ) -> TrendSeries:
        """Chart series of slept hours, each session attributed to the moment it ended."""
        entries = [
            TimestampedValue(id=session.id, value=session.hours, timestamp=session.end)
            for session in self.event_store.sleep_sessions()
        ]
        return build_trend(
            entries, window, now, reducer, monthly_span_days=self.config.trend.monthly_span_days
        )

    # Staged delivery

    def on_advisory_revealed(self, listener: Callable[[Advisory, int], None]) -> Callable[[], None]:
        return self.scheduler.subscribe_revealed(listener)

    def on_delivery_complete(
        self, listener: Callable[[tuple[Advisory, ...]], None]
    ) -> Callable[[], None]:
        return self.scheduler.subscribe_complete(listener)

    def open_assistant(self, now: datetime) -> int:
        """Evaluate fresh advisories and start revealing them. Returns the run's generation."""
        advisories = self.recommendations(now)
        generation = self.scheduler.start(advisories)
        self.logger.info("assistant_opened", generation=generation, advisories=len(advisories))
        return generation

    def close_assistant(self) -> None:
        """Stop revealing. Pending reveals of the current run never take effect."""
        self.scheduler.cancel()
        self.logger.info("assistant_closed", generation=self.scheduler.generation)

    async def run_assistant(self, now: datetime) -> tuple[Advisory, ...] | None:
        """
        Open the assistant and wait for the run to finish.

        Returns:
            Every revealed advisory in reveal order, or None when the run was
            cancelled or superseded before completing.
        """
        loop = asyncio.get_running_loop()
        finished: asyncio.Future[tuple[Advisory, ...] | None] = loop.create_future()

        generation = self.open_assistant(now)

        def on_complete(revealed: tuple[Advisory, ...]) -> None:
            if self.scheduler.generation == generation and not finished.done():
                finished.set_result(revealed)

        def on_cancelled() -> None:
            if not finished.done():
                finished.set_result(None)

        # Subscribing after start() keeps the previous run's cancellation out of this
        # waiter, so any cancellation seen here belongs to this run.
        unsubscribers = [
            self.scheduler.subscribe_complete(on_complete),
            self.scheduler.subscribe_cancelled(on_cancelled),
        ]
        try:
            return await finished
        finally:
            for unsubscribe in unsubscribers:
                unsubscribe()

    # Sleep timer

    @property
    def is_sleeping(self) -> bool:
        return self.sleep_state.load().is_active

    def start_sleep(self, now: datetime) -> Result[SleepTimerState, SleepTimerError]:
        result = self.sleep_timer.start(self.sleep_state.load(), now)
        if result.is_ok():
            self.sleep_state.save(result.unwrap())
        return result

    def stop_sleep(self, now: datetime) -> Result[SleepSession, SleepTimerError]:
        """Close the open session, store it, and clear the persisted start."""
        result = self.sleep_timer.stop(self.sleep_state.load(), now)
        if result.is_err():
            return Result.err(result.unwrap_err())

        outcome = result.unwrap()
        # The id comes from the start, so a retry after a failed save finds the
        # session already recorded.
        if any(s.id == outcome.session.id for s in self.event_store.sleep_sessions()):
            self.logger.info("sleep_session_already_recorded", session_id=outcome.session.id)
        else:
            self.event_store.append_sleep_session(outcome.session)
        self.sleep_state.save(outcome.state)
        return Result.ok(outcome.session)

    def sleep_elapsed(self, now: datetime) -> timedelta:
        """Elapsed time of the open session, recomputed from the persisted start."""
        return self.sleep_timer.elapsed(self.sleep_state.load(), now)

    def average_sleep(self) -> timedelta | None:
        return average_sleep(self.event_store.sleep_sessions())
