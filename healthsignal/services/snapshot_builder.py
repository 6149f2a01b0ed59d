"""
Health snapshot assembly.

Builds a HealthSnapshot from already-materialized inputs. Absence is modeled
in the snapshot (None fields, zero totals) and never raised as an error, so
downstream advisory rules can treat missing data as a case of its own.
"""

import math
from collections.abc import Iterable
from datetime import datetime

import structlog

from healthsignal.config import SnapshotConfig
from healthsignal.domain.models import (
    BiometricProfile,
    HealthSnapshot,
    SleepSession,
    TimestampedValue,
    ensure_aware,
)
from healthsignal.services.bucketizer import start_of_day, total_between

logger = structlog.get_logger(__name__)


def _positive(value: float | None) -> float | None:
    if value is None or not math.isfinite(value) or value <= 0:
        return None
    return value


def calculate_bmi(height_cm: float | None, weight_kg: float | None) -> float | None:
    """BMI rounded to 2 decimals, or None if either biometric is absent or non-positive."""
    height_cm, weight_kg = _positive(height_cm), _positive(weight_kg)
    if height_cm is None or weight_kg is None:
        return None
    height_m = height_cm / 100
    return round(weight_kg / (height_m * height_m), 2)


def latest_sleep_hours(sessions: Iterable[SleepSession]) -> float | None:
    """Duration in hours of the most recently ended session."""
    latest = max(sessions, key=lambda session: session.end, default=None)
    return latest.hours if latest is not None else None


class SnapshotBuilder:
    """Derives point-in-time snapshots. Stateless apart from its configuration."""

    def __init__(self, config: SnapshotConfig | None = None) -> None:
        self.config = config or SnapshotConfig()
        self.logger = logger.bind(component="snapshot_builder")

    def hydration_target(self, profile: BiometricProfile) -> float:
        weight_kg = _positive(profile.weight_kg)
        if weight_kg is None:
            return self.config.hydration_fallback_l
        return weight_kg * self.config.hydration_l_per_kg

    def build(
        self,
        profile: BiometricProfile,
        sleep_sessions: Iterable[SleepSession],
        calorie_entries: Iterable[TimestampedValue],
        fluid_entries: Iterable[TimestampedValue],
        nutrition_total: float | None,
        now: datetime,
    ) -> HealthSnapshot:
        """
        Assemble a snapshot for the calendar day containing `now`.

        Args:
            profile: Static biometrics; absent height/weight yield bmi=None.
            sleep_sessions: Completed sessions only; an open timer never counts.
            calorie_entries: Burned kcal events; today's sum becomes burned_calories.
            fluid_entries: Fluid liters; today's sum becomes hydration_actual_l.
            nutrition_total: Today's eaten kcal, None when nothing was logged.
            now: Reference instant; the day runs from local midnight to `now` inclusive.
        """
        now = ensure_aware(now)
        day_start = start_of_day(now)

        snapshot = HealthSnapshot(
            bmi=calculate_bmi(profile.height_cm, profile.weight_kg),
            sleep_hours=latest_sleep_hours(sleep_sessions),
            burned_calories=total_between(calorie_entries, day_start, now),
            nutrition_total_kcal=_non_negative(nutrition_total),
            hydration_actual_l=total_between(fluid_entries, day_start, now),
            hydration_target_l=self.hydration_target(profile),
            taken_at=now,
        )

        self.logger.debug(
            "snapshot_built",
            has_bmi=snapshot.bmi is not None,
            has_sleep=snapshot.sleep_hours is not None,
            has_nutrition=snapshot.nutrition_total_kcal is not None,
        )
        return snapshot


def _non_negative(value: float | None) -> float | None:
    # Malformed totals are treated as "not logged".
    if value is None or not math.isfinite(value) or value < 0:
        return None
    return value


def build_snapshot(
    profile: BiometricProfile,
    sleep_sessions: Iterable[SleepSession],
    calorie_entries: Iterable[TimestampedValue],
    fluid_entries: Iterable[TimestampedValue],
    nutrition_total: float | None,
    now: datetime,
    config: SnapshotConfig | None = None,
) -> HealthSnapshot:
    """Functional shortcut for SnapshotBuilder(config).build(...)."""
    return SnapshotBuilder(config).build(
        profile, sleep_sessions, calorie_entries, fluid_entries, nutrition_total, now
    )
