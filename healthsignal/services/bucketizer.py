"""
Deterministic time bucketing for trend charts.

Every window produces exactly seven buckets, oldest first, whose boundaries
are derived from the `now` reference alone. Membership is half-open
(start <= timestamp < end) except for the final bucket, which also contains
entries stamped exactly `now`. The same arguments always give the same buckets.

Window layouts:
- TODAY: seven 2-hour buckets ending at `now`
- WEEKLY: seven calendar days in the timezone of `now`, today last
- MONTHLY: the trailing span (30 days by default) cut into ceil(span / 7)-day
  buckets from the oldest edge, clipped at `now`
"""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta

import structlog

from healthsignal.domain.models import (
    Bucket,
    Reducer,
    TimestampedValue,
    TrendSeries,
    Window,
    ensure_aware,
)

logger = structlog.get_logger(__name__)

BUCKET_COUNT = 7
TODAY_BUCKET_WIDTH = timedelta(hours=2)
DEFAULT_MONTHLY_SPAN_DAYS = 30

_WEEKDAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


@dataclass(frozen=True)
class BucketSpan:
    """Boundaries of one bucket before aggregation."""

    label: str
    start: datetime
    end: datetime
    nominal_width: timedelta

    def width_days(self) -> float:
        """Width used to normalize the mean reducer; clipped-away buckets keep their nominal width."""
        width = self.end.astimezone(UTC) - self.start.astimezone(UTC)
        if width <= timedelta(0):
            width = self.nominal_width
        return width / timedelta(days=1)


def default_reducer(window: Window) -> Reducer:
    return Reducer.MEAN if window is Window.MONTHLY else Reducer.SUM


def contribution(value: float) -> float:
    """Amount an entry adds to an aggregate. Negative and NaN values add nothing."""
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def start_of_day(now: datetime) -> datetime:
    """Local midnight of the calendar day containing `now`."""
    now = ensure_aware(now)
    return datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)


def bucket_spans(
    window: Window,
    now: datetime,
    *,
    monthly_span_days: int = DEFAULT_MONTHLY_SPAN_DAYS,
) -> list[BucketSpan]:
    """Compute the seven bucket boundaries of `window`, oldest first."""
    now = ensure_aware(now)
    window = Window(window)
    if window is Window.TODAY:
        return _today_spans(now)
    if window is Window.WEEKLY:
        return _weekly_spans(now)
    return _monthly_spans(now, monthly_span_days)


def _today_spans(now: datetime) -> list[BucketSpan]:
    # Absolute arithmetic in UTC so DST shifts never stretch a bucket.
    now_utc = now.astimezone(UTC)
    spans = []
    for k in range(BUCKET_COUNT):
        hours_before_now = (BUCKET_COUNT - 1 - k) * 2
        end = now_utc - timedelta(hours=hours_before_now)
        start = end - TODAY_BUCKET_WIDTH
        spans.append(
            BucketSpan(
                label="Now" if hours_before_now == 0 else f"{hours_before_now}h",
                start=start.astimezone(now.tzinfo),
                end=end.astimezone(now.tzinfo),
                nominal_width=TODAY_BUCKET_WIDTH,
            )
        )
    return spans


def _weekly_spans(now: datetime) -> list[BucketSpan]:
    today = now.date()
    spans = []
    for k in range(BUCKET_COUNT):
        day = today - timedelta(days=BUCKET_COUNT - 1 - k)
        start = datetime.combine(day, time.min, tzinfo=now.tzinfo)
        if k == BUCKET_COUNT - 1:
            end = now
        else:
            end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=now.tzinfo)
        spans.append(
            BucketSpan(
                label=_WEEKDAY_LABELS[day.weekday()],
                start=start,
                end=end,
                nominal_width=timedelta(days=1),
            )
        )
    return spans


def _monthly_spans(now: datetime, span_days: int) -> list[BucketSpan]:
    now_utc = now.astimezone(UTC)
    width = timedelta(days=math.ceil(span_days / BUCKET_COUNT))
    origin = now_utc - timedelta(days=span_days)
    spans = []
    for k in range(BUCKET_COUNT):
        start = min(origin + k * width, now_utc)
        end = now_utc if k == BUCKET_COUNT - 1 else min(origin + (k + 1) * width, now_utc)
        spans.append(
            BucketSpan(
                label=f"W{k + 1}",
                start=start.astimezone(now.tzinfo),
                end=end.astimezone(now.tzinfo),
                nominal_width=width,
            )
        )
    return spans


def _bucket_index(spans: list[BucketSpan], timestamp: datetime) -> int | None:
    # Compare in UTC: aware datetimes sharing a tzinfo compare by wall clock.
    timestamp = timestamp.astimezone(UTC)
    last = len(spans) - 1
    for index, span in enumerate(spans):
        start, end = span.start.astimezone(UTC), span.end.astimezone(UTC)
        if index == last:
            if start <= timestamp <= end:
                return index
        elif start <= timestamp < end:
            return index
    return None


def _aggregate(
    entries: Iterable[TimestampedValue], spans: list[BucketSpan], reducer: Reducer
) -> list[Bucket]:
    totals = [0.0] * len(spans)
    for entry in entries:
        index = _bucket_index(spans, entry.timestamp)
        if index is None:
            continue
        amount = contribution(entry.value)
        if amount != entry.value:
            logger.debug("malformed_entry_ignored", entry_id=entry.id, value=entry.value)
        totals[index] += amount

    buckets = []
    for span, total in zip(spans, totals, strict=True):
        aggregate = total / span.width_days() if reducer is Reducer.MEAN else total
        buckets.append(Bucket(label=span.label, aggregate=aggregate, start=span.start, end=span.end))
    return buckets


def bucketize(
    entries: Iterable[TimestampedValue],
    window: Window,
    now: datetime,
    reducer: Reducer | None = None,
    *,
    monthly_span_days: int = DEFAULT_MONTHLY_SPAN_DAYS,
) -> list[Bucket]:
    """
    Aggregate entries into the seven buckets of `window`.

    Args:
        entries: Timestamped values; entries outside the covered span are excluded.
        window: Chart window.
        now: Reference instant all boundaries derive from. Naive means UTC.
        reducer: SUM or MEAN (per-day mean normalized by bucket width).
            Defaults to MEAN for MONTHLY and SUM otherwise.
        monthly_span_days: Trailing span covered by the MONTHLY window.

    Returns:
        Exactly seven buckets, oldest first. Empty buckets aggregate to 0.
    """
    window = Window(window)
    reducer = Reducer(reducer) if reducer is not None else default_reducer(window)
    spans = bucket_spans(window, now, monthly_span_days=monthly_span_days)
    return _aggregate(entries, spans, reducer)


def total_between(entries: Iterable[TimestampedValue], start: datetime, end: datetime) -> float:
    """Sum of contributions with start <= timestamp <= end."""
    start, end = ensure_aware(start).astimezone(UTC), ensure_aware(end).astimezone(UTC)
    return sum(
        (
            contribution(entry.value)
            for entry in entries
            if start <= entry.timestamp.astimezone(UTC) <= end
        ),
        0.0,
    )


def build_trend(
    entries: Iterable[TimestampedValue],
    window: Window,
    now: datetime,
    reducer: Reducer | None = None,
    *,
    monthly_span_days: int = DEFAULT_MONTHLY_SPAN_DAYS,
) -> TrendSeries:
    """Bucketize `entries` and add the window total and the mean bucket value."""
    entries = list(entries)
    window = Window(window)
    reducer = Reducer(reducer) if reducer is not None else default_reducer(window)
    spans = bucket_spans(window, now, monthly_span_days=monthly_span_days)
    buckets = _aggregate(entries, spans, reducer)
    return TrendSeries(
        window=window,
        reducer=reducer,
        buckets=buckets,
        total=total_between(entries, spans[0].start, spans[-1].end),
        average=sum(bucket.aggregate for bucket in buckets) / BUCKET_COUNT,
    )
