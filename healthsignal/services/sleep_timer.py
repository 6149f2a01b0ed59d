"""
Sleep timer as pure state transitions.

The timer never reads or writes storage. Callers pass in the persisted
SleepTimerState and get back the next state (plus the finished session on
stop), then persist it themselves. Elapsed time is always `now - start`,
so a restarted process that reloads the persisted start resumes exactly
where it left off.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from healthsignal.domain.models import SleepSession, SleepTimerState, ensure_aware
from healthsignal.services.event_store import Result

logger = structlog.get_logger(__name__)


class SleepTimerError(Exception):
    """Base class for sleep timer misuse."""


class AlreadyActiveError(SleepTimerError):
    def __init__(self, started_at: datetime) -> None:
        super().__init__(f"A sleep session is already in progress since {started_at.isoformat()}")
        self.started_at = started_at


class NotActiveError(SleepTimerError):
    def __init__(self) -> None:
        super().__init__("No active sleep session to end")


class NonPositiveDurationError(SleepTimerError):
    def __init__(self, started_at: datetime, stopped_at: datetime) -> None:
        super().__init__(
            f"Sleep session must end after it starts "
            f"(start={started_at.isoformat()}, stop={stopped_at.isoformat()})"
        )
        self.started_at = started_at
        self.stopped_at = stopped_at


@dataclass(frozen=True)
class StopOutcome:
    """Result of a successful stop: the cleared state and the finished session."""

    state: SleepTimerState
    session: SleepSession


def session_id_for(start: datetime) -> str:
    return f"sleep-{int(start.timestamp() * 1000)}"


class SleepTimer:
    """Start/stop/elapsed transitions over an explicit SleepTimerState."""

    def __init__(self) -> None:
        self.logger = logger.bind(component="sleep_timer")

    def start(
        self, state: SleepTimerState, now: datetime
    ) -> Result[SleepTimerState, SleepTimerError]:
        """Open a session at `now`. Fails with AlreadyActiveError instead of overwriting."""
        if state.start is not None:
            self.logger.warning("sleep_timer_already_active", started_at=state.start.isoformat())
            return Result.err(AlreadyActiveError(state.start))

        now = ensure_aware(now)
        self.logger.info("sleep_timer_started", started_at=now.isoformat())
        return Result.ok(SleepTimerState(start=now))

    def stop(self, state: SleepTimerState, now: datetime) -> Result[StopOutcome, SleepTimerError]:
        """Close the open session at `now` and return it with a cleared state."""
        if state.start is None:
            self.logger.warning("sleep_timer_not_active")
            return Result.err(NotActiveError())

        now = ensure_aware(now)
        if now <= state.start:
            self.logger.warning(
                "sleep_timer_non_positive_duration",
                started_at=state.start.isoformat(),
                stopped_at=now.isoformat(),
            )
            return Result.err(NonPositiveDurationError(state.start, now))

        session = SleepSession(id=session_id_for(state.start), start=state.start, end=now)
        self.logger.info(
            "sleep_timer_stopped", session_id=session.id, duration_ms=session.duration_ms
        )
        return Result.ok(StopOutcome(state=SleepTimerState(), session=session))

    def elapsed(self, state: SleepTimerState, now: datetime) -> timedelta:
        """Time since the open session started; zero when idle or when `now` precedes it."""
        if state.start is None:
            return timedelta(0)
        return max(ensure_aware(now) - state.start, timedelta(0))


def average_sleep(sessions: Iterable[SleepSession]) -> timedelta | None:
    """Mean session duration, or None without sessions."""
    durations = [session.duration for session in sessions]
    if not durations:
        return None
    return sum(durations, timedelta(0)) / len(durations)


def recent_sessions(sessions: Iterable[SleepSession], limit: int = 3) -> Sequence[SleepSession]:
    """Most recently ended sessions first."""
    return sorted(sessions, key=lambda session: session.end, reverse=True)[:limit]


def format_duration(duration: timedelta) -> str:
    """Render as '7h 5m', or '45m' under an hour. Seconds are truncated."""
    total_minutes = max(int(duration.total_seconds() // 60), 0)
    hours, minutes = divmod(total_minutes, 60)
    if hours == 0:
        return f"{minutes}m"
    return f"{hours}h {minutes}m"
