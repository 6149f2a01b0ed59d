"""
Staged, cancellable reveal of advisories.

State machine per run: Idle -> Scheduled(n) -> ... -> Scheduled(0) -> Idle.

Key patterns:
- Generation token: every scheduled callback captures the generation it was
  created for and becomes a no-op once the scheduler has moved on, so stale
  timers never need to be cleared to be harmless
- Injected clock: anything with `call_later(delay, callback, *args)` drives
  the timers (the running asyncio loop by default, a fake clock in tests)
- The generation check and the state update it guards run under one lock,
  which keeps the scheduler correct on a threaded timer as well
"""

import asyncio
import random
import threading
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Any, Protocol

import structlog

from healthsignal.config import DeliveryConfig
from healthsignal.domain.models import Advisory

logger = structlog.get_logger(__name__)

RevealedListener = Callable[[Advisory, int], None]
CompleteListener = Callable[[tuple[Advisory, ...]], None]
CancelledListener = Callable[[], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    """Deferred-callback source. asyncio.AbstractEventLoop satisfies it."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class SchedulerState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"


class StagedDeliveryScheduler:
    """
    Reveals a batch of advisories one at a time on a fixed cadence.

    Reveal k fires `initial_delay_ms + k * inter_delay_ms` after start(),
    plus an optional jitter drawn from a seeded random source. Jitter is kept
    below the interval so reveals always fire in increasing k order.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        config: DeliveryConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or DeliveryConfig()
        self._clock = clock
        self._rng = rng or random.Random(self.config.jitter_seed)
        self._lock = threading.RLock()

        self._generation = 0
        self._state = SchedulerState.IDLE
        self._batch: tuple[Advisory, ...] = ()
        self._revealed: list[Advisory] = []
        self._handles: list[TimerHandle] = []

        self._revealed_listeners: list[RevealedListener] = []
        self._complete_listeners: list[CompleteListener] = []
        self._cancelled_listeners: list[CancelledListener] = []

        self.logger = logger.bind(component="delivery_scheduler")

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def remaining(self) -> int:
        """Advisories of the current run still waiting to be revealed."""
        with self._lock:
            if self._state is SchedulerState.IDLE:
                return 0
            return len(self._batch) - len(self._revealed)

    @property
    def revealed(self) -> tuple[Advisory, ...]:
        """Advisories revealed so far by the current run."""
        with self._lock:
            return tuple(self._revealed)

    def subscribe_revealed(self, listener: RevealedListener) -> Callable[[], None]:
        """Call `listener(advisory, index)` on every valid reveal. Returns an unsubscribe function."""
        return self._subscribe(self._revealed_listeners, listener)

    def subscribe_complete(self, listener: CompleteListener) -> Callable[[], None]:
        """Call `listener(revealed)` once a run has revealed its whole batch."""
        return self._subscribe(self._complete_listeners, listener)

    def subscribe_cancelled(self, listener: CancelledListener) -> Callable[[], None]:
        """Call `listener()` when an in-flight run is cancelled or superseded."""
        return self._subscribe(self._cancelled_listeners, listener)

    def start(
        self,
        advisories: Sequence[Advisory],
        inter_delay_ms: int | None = None,
        initial_delay_ms: int | None = None,
    ) -> int:
        """
        Begin a new run, superseding any run in flight.

        Equivalent to cancel() followed by a fresh start: no callback of the
        previous run can take effect afterwards.

        Args:
            advisories: Batch to reveal, in order.
            inter_delay_ms: Gap between reveals (defaults to config, must be > 0).
            initial_delay_ms: Delay before the first reveal (defaults to config, >= 0).

        Returns:
            The generation token of the new run.

        Raises:
            ValueError: On a non-positive interval, a negative initial delay,
                or a configured jitter that is not below the interval.
            RuntimeError: When no clock was injected and no event loop is running.
        """
        inter = self.config.inter_delay_ms if inter_delay_ms is None else inter_delay_ms
        initial = self.config.initial_delay_ms if initial_delay_ms is None else initial_delay_ms
        if inter <= 0:
            raise ValueError("inter_delay_ms must be positive")
        if initial < 0:
            raise ValueError("initial_delay_ms must not be negative")
        if self.config.jitter_ms >= inter:
            raise ValueError("jitter_ms must be smaller than inter_delay_ms")

        clock = self._clock or asyncio.get_running_loop()

        with self._lock:
            superseded = self._retract_locked()
            if superseded is not None:
                self._announce_cancelled(superseded, reason="superseded")
            if self._state is SchedulerState.SCHEDULED:
                # A cancelled listener opened its own run; this call replaces it.
                self._retract_locked()

            generation = self._generation
            self._state = SchedulerState.SCHEDULED
            self._batch = tuple(advisories)
            self._revealed = []

            if not self._batch:
                self._handles.append(
                    clock.call_later(initial / 1000, self._complete, generation)
                )
            for k in range(len(self._batch)):
                delay_ms = initial + k * inter + self._jitter()
                self._handles.append(clock.call_later(delay_ms / 1000, self._reveal, generation, k))

        self.logger.info(
            "delivery_started",
            generation=generation,
            count=len(self._batch),
            initial_delay_ms=initial,
            inter_delay_ms=inter,
        )
        return generation

    def cancel(self) -> None:
        """Invalidate the current run immediately and return to Idle."""
        with self._lock:
            cancelled = self._retract_locked()
            if cancelled is not None:
                self._announce_cancelled(cancelled, reason="cancelled")

    def _retract_locked(self) -> int | None:
        """
        Drop the current run and move to a fresh generation.

        The generation moves on before any listener runs, so a listener that
        starts a new run gets a token nothing else will invalidate. Returns
        the generation of the run that was in flight, or None when idle.
        """
        for handle in self._handles:
            handle.cancel()
        self._handles = []

        was_running = self._state is SchedulerState.SCHEDULED
        previous = self._generation
        self._state = SchedulerState.IDLE
        self._batch = ()
        self._revealed = []
        # Bump even when idle so a caller holding an old token sees it expire.
        self._generation += 1
        return previous if was_running else None

    def _announce_cancelled(self, generation: int, reason: str) -> None:
        self.logger.info("delivery_cancelled", generation=generation, reason=reason)
        self._notify(self._cancelled_listeners)

    def _jitter(self) -> float:
        if self.config.jitter_ms <= 0:
            return 0.0
        # uniform() may return its upper bound; stay strictly below the interval.
        return min(self._rng.uniform(0, self.config.jitter_ms), self.config.jitter_ms - 1e-6)

    def _reveal(self, generation: int, index: int) -> None:
        with self._lock:
            if generation != self._generation:
                self.logger.debug(
                    "stale_reveal_ignored",
                    generation=generation,
                    current_generation=self._generation,
                    index=index,
                )
                return

            advisory = self._batch[index]
            self._revealed.append(advisory)
            self.logger.debug(
                "advisory_revealed", generation=generation, index=index, advisory_id=advisory.id
            )
            self._notify(self._revealed_listeners, advisory, index)

            # A listener may have cancelled or restarted the run.
            if generation == self._generation and len(self._revealed) == len(self._batch):
                self._finish_locked(generation)

    def _complete(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                self.logger.debug("stale_completion_ignored", generation=generation)
                return
            self._finish_locked(generation)

    def _finish_locked(self, generation: int) -> None:
        self._state = SchedulerState.IDLE
        self._handles = []
        revealed = tuple(self._revealed)
        self.logger.info("delivery_completed", generation=generation, revealed=len(revealed))
        self._notify(self._complete_listeners, revealed)

    def _subscribe(self, listeners: list, listener: Callable) -> Callable[[], None]:
        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _notify(self, listeners: list, *args: Any) -> None:
        for listener in list(listeners):
            try:
                listener(*args)
            except Exception as e:
                # Log error but keep notifying the remaining listeners
                self.logger.error(
                    "listener_failed",
                    listener=getattr(listener, "__name__", repr(listener)),
                    error=str(e),
                )
