"""
End-to-end demo of the health signal pipeline.

This script walks through:
1. Configuration loading and validation
2. Trend bucketing for the three chart windows
3. Snapshot building, advisories and the health score
4. Staged advisory delivery on the asyncio event loop
5. Sleep timer with persistence and restart recovery

Run with: uv run python demo_pipeline.py
"""

import asyncio
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.storage.key_value import (
    InMemoryProfileStore,
    JsonFileKeyValueStore,
    SleepStateRepository,
)
from healthsignal.config import (
    AppConfig,
    DeliveryConfig,
    configure_logging,
    get_config,
    print_config_summary,
    validate_config,
)
from healthsignal.domain.models import (
    BiometricProfile,
    Gender,
    SleepSession,
    TimestampedValue,
    Window,
)
from healthsignal.services.event_store import EventCategory, InMemoryEventStore
from healthsignal.services.health_advisor import HealthAdvisorService

console = Console()

PRIORITY_STYLE = {"high": "red", "medium": "yellow", "low": "green"}


def sample_store(now: datetime) -> InMemoryEventStore:
    """A day of fluid, burned and eaten kcal events plus a week of sleep."""
    fluid = [
        TimestampedValue(id=f"fluid-{i}", value=liters, timestamp=now - timedelta(hours=hours))
        for i, (liters, hours) in enumerate([(0.5, 1), (0.3, 3), (0.25, 26), (0.4, 50), (0.6, 200)])
    ]
    calories = [
        TimestampedValue(id=f"cal-{i}", value=kcal, timestamp=now - timedelta(hours=hours))
        for i, (kcal, hours) in enumerate([(120, 2), (45, 5), (310, 30), (200, 100)])
    ]
    nutrition = [
        TimestampedValue(id=f"meal-{i}", value=kcal, timestamp=now - timedelta(hours=hours))
        for i, (kcal, hours) in enumerate([(450, 1), (700, 4), (650, 28)])
    ]
    sleep = []
    for day, hours in enumerate([7.5, 6.2, 8.1, 5.4, 7.0, 6.8, 7.9], start=1):
        end = now - timedelta(days=day) + timedelta(hours=8)
        sleep.append(
            SleepSession(id=f"sleep-demo-{day}", start=end - timedelta(hours=hours), end=end)
        )
    return InMemoryEventStore(fluid=fluid, calories=calories, nutrition=nutrition, sleep_sessions=sleep)


def demo_configuration() -> bool:
    console.print(Panel("Configuration", style="blue"))
    try:
        validate_config()
        print_config_summary()
        return True
    except Exception as e:
        console.print(f"Configuration failed: {e}", style="red")
        return False


def demo_trends(service: HealthAdvisorService, now: datetime) -> bool:
    console.print(Panel("Trend Buckets", style="blue"))
    for category in (EventCategory.FLUID, EventCategory.CALORIES):
        for window in Window:
            series = service.trend(category, window, now)
            table = Table(title=f"{category.value} / {window.value} ({series.reducer.value})")
            for bucket in series.buckets:
                table.add_column(bucket.label, justify="right")
            table.add_row(*(f"{bucket.aggregate:.2f}" for bucket in series.buckets))
            console.print(table)
            console.print(f"total={series.total:.2f} average={series.average:.2f}")
    return True


def demo_advisories(service: HealthAdvisorService, now: datetime) -> bool:
    console.print(Panel("Snapshot and Advisories", style="blue"))
    snapshot = service.snapshot(now)

    summary = Table(title="Health Snapshot")
    summary.add_column("Field", style="cyan")
    summary.add_column("Value", style="white")
    for field, value in snapshot.model_dump(exclude={"taken_at"}).items():
        summary.add_row(field, "-" if value is None else f"{value:.2f}")
    console.print(summary)

    advisories = service.recommendations(now)
    table = Table(title="Advisories")
    table.add_column("Id", style="cyan")
    table.add_column("Priority")
    table.add_column("Text", style="white")
    for advisory in advisories:
        style = PRIORITY_STYLE[advisory.priority.value]
        table.add_row(advisory.id, f"[{style}]{advisory.priority.value}[/{style}]", advisory.text)
    console.print(table)

    score = service.health_score(now)
    console.print(f"Health score: {score.score}/100", style="bold")
    console.print(score.description)
    return len(advisories) > 0


async def demo_staged_delivery(service: HealthAdvisorService, now: datetime) -> bool:
    console.print(Panel("Staged Delivery", style="blue"))

    def on_revealed(advisory, index: int) -> None:
        console.print(f"  [{index}] {advisory.text}")

    unsubscribe = service.on_advisory_revealed(on_revealed)
    try:
        # A superseded run must never leak reveals into the next one.
        service.open_assistant(now)
        revealed = await service.run_assistant(now)
    finally:
        unsubscribe()

    if revealed is None:
        console.print("Delivery was cancelled", style="red")
        return False
    console.print(f"Revealed {len(revealed)} advisories", style="green")
    return True


def demo_sleep_timer(store: InMemoryEventStore, state_path: Path, now: datetime) -> bool:
    console.print(Panel("Sleep Timer", style="blue"))
    kv_store = JsonFileKeyValueStore(state_path)

    service = HealthAdvisorService(
        store, InMemoryProfileStore(), SleepStateRepository(kv_store, user_id="demo")
    )
    start = now - timedelta(hours=7, minutes=5)
    if service.start_sleep(start).is_err():
        return False
    again = service.start_sleep(start)
    console.print(f"Second start rejected: {again.unwrap_err()}", style="yellow")

    # Simulate a process restart: a fresh service reads the persisted start.
    restarted = HealthAdvisorService(
        store, InMemoryProfileStore(), SleepStateRepository(kv_store, user_id="demo")
    )
    console.print(f"Elapsed after restart: {restarted.sleep_elapsed(now)}")

    result = restarted.stop_sleep(now)
    if result.is_err():
        console.print(f"Stop failed: {result.unwrap_err()}", style="red")
        return False
    session = result.unwrap()
    console.print(f"Stored session {session.id}: {session.hours:.2f}h", style="green")
    return True


async def run_demo() -> None:
    console.print(Panel("Health Signal Engine - Pipeline Demo", style="bold blue"))

    configure_logging(get_config().logging)
    now = datetime.now(UTC)
    store = sample_store(now)
    config: AppConfig = get_config().model_copy(
        update={"delivery": DeliveryConfig(initial_delay_ms=200, inter_delay_ms=300)}
    )
    profile = BiometricProfile(height_cm=175, weight_kg=70, gender=Gender.FEMALE)

    with tempfile.TemporaryDirectory() as tmp:
        state_path = Path(tmp) / "state.json"
        service = HealthAdvisorService(
            store,
            InMemoryProfileStore(profile),
            SleepStateRepository(JsonFileKeyValueStore(state_path)),
            config=config,
        )

        steps = [
            ("Configuration", lambda: demo_configuration()),
            ("Trends", lambda: demo_trends(service, now)),
            ("Advisories", lambda: demo_advisories(service, now)),
            ("Staged Delivery", lambda: demo_staged_delivery(service, now)),
            ("Sleep Timer", lambda: demo_sleep_timer(store, state_path, now)),
        ]

        results = []
        for name, step in steps:
            console.print(f"\n{'=' * 60}")
            try:
                outcome = step()
                if asyncio.iscoroutine(outcome):
                    outcome = await outcome
                results.append((name, outcome))
            except Exception as e:
                console.print(f"{name} failed with exception: {e}", style="red")
                results.append((name, False))

    summary_table = Table(title="Demo Summary")
    summary_table.add_column("Step", style="cyan")
    summary_table.add_column("Result", style="white")
    for name, ok in results:
        summary_table.add_row(name, "PASSED" if ok else "FAILED")
    console.print(summary_table)


if __name__ == "__main__":
    try:
        asyncio.run(run_demo())
    except KeyboardInterrupt:
        console.print("\nDemo stopped by user", style="yellow")
