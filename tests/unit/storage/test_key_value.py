"""Tests for the key-value storage adapters."""

from datetime import UTC, datetime
from pathlib import Path

import pytest

from adapters.storage.key_value import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueProfileStore,
    SleepStateRepository,
    user_key,
)
from healthsignal.domain.models import BiometricProfile, Gender, SleepTimerState

START = datetime(2024, 3, 5, 22, 30, tzinfo=UTC)


def test_user_key_scoping() -> None:
    assert user_key("sleep_start_time", "abc") == "sleep_start_time_abc"
    assert user_key("sleep_start_time", None) == "sleep_start_time"
    assert user_key("sleep_start_time", "") == "sleep_start_time"


class TestJsonFileKeyValueStore:
    def test_values_survive_a_new_instance(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "state.json"
        JsonFileKeyValueStore(path).set("k", "v")

        assert JsonFileKeyValueStore(path).get("k") == "v"

    def test_delete_and_missing_keys(self, tmp_path: Path) -> None:
        store = JsonFileKeyValueStore(tmp_path / "state.json")
        assert store.get("missing") is None

        store.set("k", "v")
        store.delete("k")
        store.delete("never-there")
        assert store.get("k") is None

    @pytest.mark.parametrize("contents", ["[1, 2]", "{not json", ""])
    def test_unreadable_file_reads_as_empty(self, tmp_path: Path, contents: str) -> None:
        path = tmp_path / "state.json"
        path.write_text(contents, encoding="utf-8")
        assert JsonFileKeyValueStore(path).get("k") is None

    def test_write_replaces_unreadable_file(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")

        JsonFileKeyValueStore(path).set("k", "v")

        assert JsonFileKeyValueStore(path).get("k") == "v"


class TestSleepStateRepository:
    def test_round_trip_and_clear(self) -> None:
        kv = InMemoryKeyValueStore()
        repo = SleepStateRepository(kv, user_id="u1")

        repo.save(SleepTimerState(start=START))
        assert kv.get("sleep_start_time_u1") == START.isoformat()
        assert repo.load() == SleepTimerState(start=START)

        repo.save(SleepTimerState())
        assert kv.get("sleep_start_time_u1") is None
        assert not repo.load().is_active

    def test_unreadable_value_reads_as_idle(self) -> None:
        repo = SleepStateRepository(InMemoryKeyValueStore({"sleep_start_time": "not-a-date"}))
        assert repo.load() == SleepTimerState()

    def test_corrupt_file_reads_as_idle_and_timer_can_restart(self, tmp_path: Path) -> None:
        path = tmp_path / "kv.json"
        path.write_text("{not json", encoding="utf-8")
        repo = SleepStateRepository(JsonFileKeyValueStore(path))

        assert repo.load() == SleepTimerState()

        repo.save(SleepTimerState(start=START))
        assert repo.load() == SleepTimerState(start=START)

    def test_users_do_not_share_state(self) -> None:
        kv = InMemoryKeyValueStore()
        SleepStateRepository(kv, user_id="a").save(SleepTimerState(start=START))
        assert not SleepStateRepository(kv, user_id="b").load().is_active


class TestKeyValueProfileStore:
    def test_save_and_load(self) -> None:
        store = KeyValueProfileStore(InMemoryKeyValueStore(), user_id="u1")
        profile = BiometricProfile(height_cm=175, weight_kg=70, gender=Gender.MALE)

        store.save(profile)

        assert store.load() == profile

    def test_missing_or_corrupt_profile_is_empty(self) -> None:
        assert KeyValueProfileStore(InMemoryKeyValueStore()).load() == BiometricProfile()
        corrupt = InMemoryKeyValueStore({"user_profile": "{not json"})
        assert KeyValueProfileStore(corrupt).load() == BiometricProfile()
