"""
Event storage contract and shared service plumbing.

Key patterns:
- Protocol-based dependency injection: the engine reads events through the
  EventStore protocol and never owns persistence
- Generic Result type for expected failures
- Structured logging configured once for every service module
"""

from collections.abc import Iterable
from enum import Enum
from typing import Generic, Protocol, TypeVar

import structlog

from healthsignal.config import configure_logging
from healthsignal.domain.models import SleepSession, TimestampedValue

# Configure structured logging with the defaults; entry points re-apply the loaded config.
configure_logging()

logger = structlog.get_logger(__name__)

# Generic Result type for explicit error handling
ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


class Result(Generic[ValueT, ErrorT]):
    """
    Explicit error handling without exceptions for expected failures.

    Why: Makes error paths visible in type system, forces handling decisions.
    When to use: When failure is expected business logic, not exceptional.
    """

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._error is None else default  # type: ignore

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error


class EventCategory(str, Enum):
    """Append-only event collections kept per user."""

    FLUID = "fluid"  # liters
    CALORIES = "calories"  # kcal burned
    NUTRITION = "nutrition"  # kcal eaten


class EventStore(Protocol):
    """
    Read/append contract for timestamped health events.

    Why Protocol over ABC: the real store lives outside the engine (local
    storage, remote sync); anything with these methods can be plugged in.
    """

    def entries(self, category: EventCategory) -> list[TimestampedValue]: ...

    def append(self, category: EventCategory, entry: TimestampedValue) -> None: ...

    def sleep_sessions(self) -> list[SleepSession]: ...

    def append_sleep_session(self, session: SleepSession) -> None: ...


class InMemoryEventStore:
    """
    Process-local EventStore used by tests, demos and single-device setups.

    Entries are never mutated or removed; ids must be unique per category.
    """

    def __init__(
        self,
        fluid: Iterable[TimestampedValue] = (),
        calories: Iterable[TimestampedValue] = (),
        nutrition: Iterable[TimestampedValue] = (),
        sleep_sessions: Iterable[SleepSession] = (),
    ) -> None:
        self._entries: dict[EventCategory, list[TimestampedValue]] = {
            category: [] for category in EventCategory
        }
        self._sleep_sessions: list[SleepSession] = []
        self.logger = logger.bind(component="event_store")

        for category, seed in (
            (EventCategory.FLUID, fluid),
            (EventCategory.CALORIES, calories),
            (EventCategory.NUTRITION, nutrition),
        ):
            for entry in seed:
                self.append(category, entry)
        for session in sleep_sessions:
            self.append_sleep_session(session)

    def entries(self, category: EventCategory) -> list[TimestampedValue]:
        return list(self._entries[category])

    def append(self, category: EventCategory, entry: TimestampedValue) -> None:
        """Append an entry. Raises ValueError if the id is already stored."""
        if any(existing.id == entry.id for existing in self._entries[category]):
            raise ValueError(f"Duplicate {category.value} entry id: {entry.id}")
        self._entries[category].append(entry)
        self.logger.debug("entry_appended", category=category.value, entry_id=entry.id)

    def sleep_sessions(self) -> list[SleepSession]:
        return list(self._sleep_sessions)

    def append_sleep_session(self, session: SleepSession) -> None:
        """Append a completed session. Raises ValueError if the id is already stored."""
        if any(existing.id == session.id for existing in self._sleep_sessions):
            raise ValueError(f"Duplicate sleep session id: {session.id}")
        self._sleep_sessions.append(session)
        self.logger.debug("sleep_session_appended", session_id=session.id)
