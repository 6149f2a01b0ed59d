"""Shared test doubles."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest


@dataclass
class FakeTimer:
    when: float
    seq: int
    callback: Callable[..., Any]
    args: tuple[Any, ...]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class FakeClock:
    """
    Manually advanced clock implementing `call_later`.

    With honor_cancel=False, cancelled timers still fire, which models a
    timer backend that cannot retract callbacks already queued.
    """

    honor_cancel: bool = True
    now: float = 0.0
    timers: list[FakeTimer] = field(default_factory=list)

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeTimer:
        timer = FakeTimer(self.now + delay, len(self.timers), callback, args)
        self.timers.append(timer)
        return timer

    def _due(self, until: float) -> list[FakeTimer]:
        return [
            t
            for t in self.timers
            if not t.fired and t.when <= until and not (t.cancelled and self.honor_cancel)
        ]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while due := self._due(target):
            timer = min(due, key=lambda t: (t.when, t.seq))
            timer.fired = True
            self.now = timer.when
            timer.callback(*timer.args)
        self.now = target

    def run_all(self) -> None:
        self.advance(max((t.when for t in self.timers), default=self.now) - self.now)

    @property
    def delays(self) -> list[float]:
        return [t.when for t in self.timers]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def leaky_clock() -> FakeClock:
    return FakeClock(honor_cancel=False)


@pytest.fixture
def make_clock() -> Callable[..., FakeClock]:
    return FakeClock
