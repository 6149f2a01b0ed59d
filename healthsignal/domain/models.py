"""
Domain models for personal health signals and advisories.

These models represent the core concepts shared by every service: raw
timestamped events, derived snapshots, chart buckets and advisory messages.
They use Pydantic for validation and are immutable once created.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator


def ensure_aware(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC so comparisons never mix naive and aware values."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Window(str, Enum):
    """Aggregation granularity requested by a chart."""

    TODAY = "today"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Reducer(str, Enum):
    """How entries inside one bucket are combined."""

    SUM = "sum"
    MEAN = "mean"  # per-day mean, normalized by bucket width


class Gender(str, Enum):
    FEMALE = "female"
    MALE = "male"
    OTHER = "other"
    UNSPECIFIED = "unspecified"


class Priority(str, Enum):
    """Advisory priority, ranked high first."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


class BmiCategory(str, Enum):
    UNDERWEIGHT = "underweight"
    NORMAL = "normal"
    OVERWEIGHT = "overweight"
    OBESE = "obese"


def bmi_category(bmi: float) -> BmiCategory:
    """Classify a BMI value using half-open bands so every value has a category."""
    if bmi < 18.5:
        return BmiCategory.UNDERWEIGHT
    if bmi < 25:
        return BmiCategory.NORMAL
    if bmi < 30:
        return BmiCategory.OVERWEIGHT
    return BmiCategory.OBESE


class TimestampedValue(BaseModel):
    """
    One logged event: fluid intake liters, burned kcal or eaten kcal.

    Negative and NaN values are accepted here on purpose. Producers are
    expected to reject them, and the aggregation code counts them as zero.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    value: float
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return ensure_aware(v)


class SleepSession(BaseModel):
    """A completed sleep session. Open sessions live in SleepTimerState instead."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @model_validator(mode="after")
    def end_after_start(self) -> "SleepSession":
        if self.end <= self.start:
            raise ValueError("sleep session must end after it starts")
        return self

    @computed_field(return_type=int)
    def duration_ms(self) -> int:
        return (self.end - self.start) // timedelta(milliseconds=1)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def hours(self) -> float:
        return self.duration / timedelta(hours=1)


class SleepTimerState(BaseModel):
    """The only persisted sleep-timer value: when the open session started, if any."""

    model_config = ConfigDict(frozen=True)

    start: datetime | None = None

    @field_validator("start")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        return ensure_aware(v) if v is not None else None

    @property
    def is_active(self) -> bool:
        return self.start is not None


class BiometricProfile(BaseModel):
    """Static biometrics supplied by the profile store. Absent values stay None."""

    model_config = ConfigDict(frozen=True)

    height_cm: float | None = None
    weight_kg: float | None = None
    gender: Gender = Gender.UNSPECIFIED


class Bucket(BaseModel):
    """Aggregate over one time sub-interval of a chart window."""

    model_config = ConfigDict(frozen=True)

    label: str
    aggregate: float
    start: datetime
    end: datetime


class TrendSeries(BaseModel):
    """Buckets for one window plus the summary figures shown next to the chart."""

    model_config = ConfigDict(frozen=True)

    window: Window
    reducer: Reducer
    buckets: list[Bucket] = Field(min_length=7, max_length=7)
    total: float = Field(description="Sum of all entries inside the covered span")
    average: float = Field(description="Mean of the bucket aggregates")


class HealthSnapshot(BaseModel):
    """Point-in-time derived view of the user's health metrics."""

    model_config = ConfigDict(frozen=True)

    bmi: float | None
    sleep_hours: float | None
    burned_calories: float = Field(default=0.0, ge=0.0)
    nutrition_total_kcal: float | None
    hydration_actual_l: float = Field(default=0.0, ge=0.0)
    hydration_target_l: float = Field(gt=0.0)
    taken_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Advisory(BaseModel):
    """A single prioritized recommendation produced by one rule family."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Stable per rule branch")
    text: str = Field(min_length=1)
    icon: str
    priority: Priority


class HealthScore(BaseModel):
    """Overall score out of 100 built from four sub-scores of 0-25 each."""

    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    water: float = Field(ge=0.0, le=25.0)
    nutrition: float = Field(ge=0.0, le=25.0)
    activity: float = Field(ge=0.0, le=25.0)
    bmi: float = Field(ge=0.0, le=25.0)
    description: str
