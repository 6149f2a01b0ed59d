"""Tests for the sleep timer transitions and sleep statistics."""

from datetime import UTC, datetime, timedelta

import pytest

from healthsignal.domain.models import SleepSession, SleepTimerState
from healthsignal.services.sleep_timer import (
    AlreadyActiveError,
    NonPositiveDurationError,
    NotActiveError,
    SleepTimer,
    SleepTimerError,
    average_sleep,
    format_duration,
    recent_sessions,
)

BEDTIME = datetime(2024, 3, 5, 22, 30, tzinfo=UTC)


@pytest.fixture
def timer() -> SleepTimer:
    return SleepTimer()


class TestTransitions:
    def test_start_returns_active_state(self, timer: SleepTimer) -> None:
        result = timer.start(SleepTimerState(), BEDTIME)

        assert result.is_ok()
        assert result.unwrap() == SleepTimerState(start=BEDTIME)

    def test_start_twice_is_reported(self, timer: SleepTimer) -> None:
        result = timer.start(SleepTimerState(start=BEDTIME), BEDTIME + timedelta(hours=1))

        assert result.is_err()
        error = result.unwrap_err()
        assert isinstance(error, AlreadyActiveError)
        assert error.started_at == BEDTIME

    def test_stop_produces_session_and_clears_state(self, timer: SleepTimer) -> None:
        wake = BEDTIME + timedelta(hours=7, minutes=45)

        outcome = timer.stop(SleepTimerState(start=BEDTIME), wake).unwrap()

        assert outcome.state == SleepTimerState()
        assert outcome.session.start == BEDTIME
        assert outcome.session.end == wake
        assert outcome.session.duration_ms == (7 * 60 + 45) * 60 * 1000
        assert outcome.session.id == f"sleep-{int(BEDTIME.timestamp() * 1000)}"

    def test_stop_when_idle_is_reported(self, timer: SleepTimer) -> None:
        result = timer.stop(SleepTimerState(), BEDTIME)
        assert isinstance(result.unwrap_err(), NotActiveError)

    def test_stop_at_start_instant_is_rejected(self, timer: SleepTimer) -> None:
        result = timer.stop(SleepTimerState(start=BEDTIME), BEDTIME)
        assert isinstance(result.unwrap_err(), NonPositiveDurationError)

    def test_errors_share_a_base_class(self, timer: SleepTimer) -> None:
        with pytest.raises(SleepTimerError):
            timer.stop(SleepTimerState(), BEDTIME).unwrap()


class TestElapsed:
    def test_elapsed_is_a_function_of_now(self, timer: SleepTimer) -> None:
        state = SleepTimerState(start=BEDTIME)
        assert timer.elapsed(state, BEDTIME + timedelta(minutes=90)) == timedelta(minutes=90)

    def test_recovery_after_restart_uses_persisted_start(self, timer: SleepTimer) -> None:
        # A new timer instance with only the persisted start sees the full span.
        restored = SleepTimerState.model_validate({"start": BEDTIME.isoformat()})
        assert SleepTimer().elapsed(restored, BEDTIME + timedelta(hours=6)) == timedelta(hours=6)

    def test_idle_and_clock_skew_give_zero(self, timer: SleepTimer) -> None:
        assert timer.elapsed(SleepTimerState(), BEDTIME) == timedelta(0)
        state = SleepTimerState(start=BEDTIME)
        assert timer.elapsed(state, BEDTIME - timedelta(minutes=5)) == timedelta(0)


class TestStatistics:
    def sessions(self) -> list[SleepSession]:
        return [
            SleepSession(
                id=f"s{i}",
                start=BEDTIME - timedelta(days=i),
                end=BEDTIME - timedelta(days=i) + span,
            )
            for i, span in enumerate([timedelta(hours=7), timedelta(hours=6), timedelta(hours=8)])
        ]

    def test_average_sleep(self) -> None:
        assert average_sleep(self.sessions()) == timedelta(hours=7)
        assert average_sleep([]) is None

    def test_recent_sessions_newest_first(self) -> None:
        assert [s.id for s in recent_sessions(self.sessions(), limit=2)] == ["s0", "s1"]

    @pytest.mark.parametrize(
        "duration,expected",
        [
            (timedelta(hours=7, minutes=5), "7h 5m"),
            (timedelta(minutes=45, seconds=59), "45m"),
            (timedelta(0), "0m"),
            (timedelta(hours=10), "10h 0m"),
        ],
    )
    def test_format_duration(self, duration: timedelta, expected: str) -> None:
        assert format_duration(duration) == expected
