"""
Tests for the staged delivery scheduler.

Most tests drive a fake clock by hand. The leaky clock keeps firing cancelled
timers so the generation check alone is what stops stale reveals.
"""

import asyncio
import random
from collections.abc import Callable
from typing import Any

import pytest

from healthsignal.config import DeliveryConfig
from healthsignal.domain.models import Advisory, Priority
from healthsignal.services.delivery_scheduler import SchedulerState, StagedDeliveryScheduler


def batch(prefix: str, count: int) -> list[Advisory]:
    return [
        Advisory(id=f"{prefix}-{i}", text=f"advice {i}", icon="water", priority=Priority.LOW)
        for i in range(count)
    ]


class Recorder:
    def __init__(self, scheduler: StagedDeliveryScheduler) -> None:
        self.revealed: list[tuple[str, int]] = []
        self.completed: list[tuple[Advisory, ...]] = []
        self.cancelled = 0
        scheduler.subscribe_revealed(lambda advisory, index: self.revealed.append((advisory.id, index)))
        scheduler.subscribe_complete(self.completed.append)
        scheduler.subscribe_cancelled(self._on_cancelled)

    def _on_cancelled(self) -> None:
        self.cancelled += 1


class TestScheduling:
    def test_reveal_times_follow_initial_plus_interval(self, clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(clock)
        scheduler.start(batch("a", 3), inter_delay_ms=800, initial_delay_ms=500)

        assert clock.delays == pytest.approx([0.5, 1.3, 2.1])

    def test_defaults_come_from_config(self, clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(
            clock, DeliveryConfig(initial_delay_ms=100, inter_delay_ms=200)
        )
        scheduler.start(batch("a", 2))
        assert clock.delays == pytest.approx([0.1, 0.3])

    def test_reveals_in_order_then_completes(self, clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(clock)
        recorder = Recorder(scheduler)
        advisories = batch("a", 3)

        scheduler.start(advisories)
        assert scheduler.state is SchedulerState.SCHEDULED
        assert scheduler.remaining == 3

        clock.advance(0.5)
        assert scheduler.revealed == (advisories[0],)
        assert scheduler.remaining == 2

        clock.run_all()
        assert recorder.revealed == [("a-0", 0), ("a-1", 1), ("a-2", 2)]
        assert recorder.completed == [tuple(advisories)]
        assert scheduler.state is SchedulerState.IDLE
        assert scheduler.remaining == 0

    def test_empty_batch_completes_after_initial_delay(self, clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(clock)
        recorder = Recorder(scheduler)

        scheduler.start([])
        clock.advance(0.4)
        assert recorder.completed == []

        clock.advance(0.2)
        assert recorder.completed == [()]
        assert recorder.revealed == []

    @pytest.mark.parametrize("inter,initial", [(0, 500), (-1, 500), (800, -1)])
    def test_invalid_timing_is_rejected(self, clock: Any, inter: int, initial: int) -> None:
        with pytest.raises(ValueError):
            StagedDeliveryScheduler(clock).start(batch("a", 1), inter, initial)


class TestCancellation:
    def test_cancel_before_any_reveal_keeps_revealed_empty(self, leaky_clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(leaky_clock)
        recorder = Recorder(scheduler)

        scheduler.start(batch("a", 4))
        scheduler.cancel()
        leaky_clock.advance(60)

        assert scheduler.revealed == ()
        assert recorder.revealed == []
        assert recorder.completed == []
        assert recorder.cancelled == 1
        assert scheduler.state is SchedulerState.IDLE

    def test_cancel_mid_run_stops_further_reveals(self, leaky_clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(leaky_clock)
        recorder = Recorder(scheduler)

        scheduler.start(batch("a", 4))
        leaky_clock.advance(1.4)  # reveals 0 and 1
        scheduler.cancel()
        leaky_clock.advance(60)

        assert [index for _, index in recorder.revealed] == [0, 1]
        assert recorder.completed == []

    def test_cancel_bumps_generation_and_retracts_timers(self, clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(clock)
        generation = scheduler.start(batch("a", 2))

        scheduler.cancel()

        assert scheduler.generation > generation
        assert all(timer.cancelled for timer in clock.timers)

    def test_cancel_when_idle_is_harmless(self, clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(clock)
        recorder = Recorder(scheduler)
        scheduler.cancel()
        assert recorder.cancelled == 0


class TestRestart:
    def test_second_start_supersedes_first(self, leaky_clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(leaky_clock)
        recorder = Recorder(scheduler)

        first = scheduler.start(batch("first", 5))
        leaky_clock.advance(0.1)
        second = scheduler.start(batch("second", 3))
        leaky_clock.advance(60)

        assert second == first + 1
        assert recorder.revealed == [("second-0", 0), ("second-1", 1), ("second-2", 2)]
        assert len(recorder.completed) == 1
        assert recorder.cancelled == 1

    def test_restart_after_partial_reveal_starts_clean(self, clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(clock)

        scheduler.start(batch("first", 3))
        clock.advance(0.6)
        assert len(scheduler.revealed) == 1

        scheduler.start(batch("second", 2))
        assert scheduler.revealed == ()

    def test_listener_restarting_the_run_is_safe(self, leaky_clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(leaky_clock)
        recorder = Recorder(scheduler)
        replacement = batch("b", 1)

        def restart_once(advisory: Advisory, index: int) -> None:
            if advisory.id == "a-0":
                scheduler.start(replacement)

        scheduler.subscribe_revealed(restart_once)
        scheduler.start(batch("a", 3))
        leaky_clock.advance(60)

        assert recorder.revealed == [("a-0", 0), ("b-0", 0)]
        assert recorder.completed == [tuple(replacement)]

    def test_cancel_listener_reopening_gets_a_live_run(self, leaky_clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(leaky_clock)
        recorder = Recorder(scheduler)
        reopened = batch("b", 2)
        reopen_generations: list[int] = []

        def reopen() -> None:
            if not reopen_generations:
                reopen_generations.append(scheduler.start(reopened))

        scheduler.subscribe_cancelled(reopen)
        scheduler.start(batch("a", 2))
        scheduler.cancel()
        leaky_clock.run_all()

        assert reopen_generations == [scheduler.generation]
        assert recorder.revealed == [("b-0", 0), ("b-1", 1)]
        assert recorder.completed == [tuple(reopened)]
        assert scheduler.state is SchedulerState.IDLE
        assert scheduler.remaining == 0

    def test_start_replaces_a_run_opened_by_a_cancel_listener(self, leaky_clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(leaky_clock)
        recorder = Recorder(scheduler)
        opened: list[int] = []

        def open_other() -> None:
            if not opened:
                opened.append(scheduler.start(batch("c", 1)))

        scheduler.subscribe_cancelled(open_other)
        scheduler.start(batch("a", 2))
        generation = scheduler.start(batch("b", 2))
        leaky_clock.run_all()

        assert generation == scheduler.generation
        assert generation > opened[0]
        assert recorder.revealed == [("b-0", 0), ("b-1", 1)]
        assert recorder.completed == [tuple(batch("b", 2))]
        assert recorder.cancelled == 1


class TestListeners:
    def test_failing_listener_does_not_stop_the_run(self, clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(clock)

        def broken(advisory: Advisory, index: int) -> None:
            raise RuntimeError("listener bug")

        scheduler.subscribe_revealed(broken)
        recorder = Recorder(scheduler)
        scheduler.start(batch("a", 2))
        clock.run_all()

        assert len(recorder.revealed) == 2
        assert len(recorder.completed) == 1

    def test_unsubscribe(self, clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(clock)
        seen: list[str] = []
        unsubscribe = scheduler.subscribe_revealed(lambda advisory, index: seen.append(advisory.id))

        unsubscribe()
        unsubscribe()
        scheduler.start(batch("a", 1))
        clock.run_all()

        assert seen == []


class TestJitter:
    def test_seeded_jitter_is_reproducible_and_keeps_order(
        self, make_clock: Callable[..., Any]
    ) -> None:
        config = DeliveryConfig(initial_delay_ms=0, inter_delay_ms=100, jitter_ms=99)

        delays = []
        for _ in range(2):
            clock = make_clock()
            StagedDeliveryScheduler(clock, config, random.Random(42)).start(batch("a", 20))
            delays.append(clock.delays)

        assert delays[0] == delays[1]
        assert delays[0] == sorted(delays[0])
        assert len(set(delays[0])) == 20
        for k, delay in enumerate(delays[0]):
            assert k * 0.1 - 1e-9 <= delay < (k + 1) * 0.1

    def test_jitter_not_below_overridden_interval_is_rejected(self, clock: Any) -> None:
        scheduler = StagedDeliveryScheduler(clock, DeliveryConfig(jitter_ms=50))
        with pytest.raises(ValueError, match="jitter_ms"):
            scheduler.start(batch("a", 2), inter_delay_ms=50)


@pytest.mark.performance
async def test_real_event_loop_delivery() -> None:
    scheduler = StagedDeliveryScheduler(config=DeliveryConfig(initial_delay_ms=5, inter_delay_ms=10))
    done: asyncio.Future[tuple[Advisory, ...]] = asyncio.get_running_loop().create_future()
    scheduler.subscribe_complete(done.set_result)
    advisories = batch("a", 3)

    scheduler.start(advisories)
    revealed = await asyncio.wait_for(done, timeout=2)

    assert revealed == tuple(advisories)


@pytest.mark.performance
async def test_real_event_loop_cancel() -> None:
    scheduler = StagedDeliveryScheduler(config=DeliveryConfig(initial_delay_ms=20, inter_delay_ms=10))
    scheduler.start(batch("a", 3))
    scheduler.cancel()

    await asyncio.sleep(0.1)

    assert scheduler.revealed == ()


def test_start_without_clock_or_loop_raises() -> None:
    with pytest.raises(RuntimeError):
        StagedDeliveryScheduler().start(batch("a", 1))
