"""
Key-value persistence adapters for the composing service.

The core never touches storage. These adapters give the composing layer a
small string key-value contract plus typed repositories on top of it:

- KeyValueStore: get/set/delete of string values (in memory or a JSON file)
- user_key: per-user key scoping so two accounts on one device never mix data
- ProfileStore: where the biometric profile is read from
- SleepStateRepository: the sleep timer's single persisted value
"""

import json
from pathlib import Path
from typing import Protocol

import structlog
from pydantic import ValidationError

from healthsignal.domain.models import BiometricProfile, SleepTimerState

logger = structlog.get_logger(__name__)

SLEEP_START_KEY = "sleep_start_time"
PROFILE_KEY = "user_profile"


def user_key(base_key: str, user_id: str | None) -> str:
    """Scope `base_key` to a user; without a user the base key is used as is."""
    if not user_id:
        return base_key
    return f"{base_key}_{user_id}"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Dict-backed store. Contents vanish with the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKeyValueStore:
    """
    Store persisted as one JSON object on disk.

    Every write rewrites the whole file through a temporary sibling and an
    atomic rename, so a crash mid-write leaves the previous contents intact.
    A file that is not a readable JSON object is logged and read as empty.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.logger = logger.bind(component="json_kv_store", path=str(self.path))

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.warning("kv_file_unreadable", error=str(e))
            return {}
        if not isinstance(data, dict):
            self.logger.warning("kv_file_unreadable", error="not a JSON object")
            return {}
        return data

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        tmp_path.replace(self.path)

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)
        self.logger.debug("key_written", key=key)

    def delete(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)
            self.logger.debug("key_deleted", key=key)


class ProfileStore(Protocol):
    def load(self) -> BiometricProfile: ...


class InMemoryProfileStore:
    def __init__(self, profile: BiometricProfile | None = None) -> None:
        self.profile = profile or BiometricProfile()

    def load(self) -> BiometricProfile:
        return self.profile

    def save(self, profile: BiometricProfile) -> None:
        self.profile = profile


class KeyValueProfileStore:
    """Profile kept as JSON under a per-user key. Unreadable data reads as an empty profile."""

    def __init__(self, store: KeyValueStore, user_id: str | None = None) -> None:
        self.store = store
        self.key = user_key(PROFILE_KEY, user_id)
        self.logger = logger.bind(component="profile_store")

    def load(self) -> BiometricProfile:
        raw = self.store.get(self.key)
        if raw is None:
            return BiometricProfile()
        try:
            return BiometricProfile.model_validate_json(raw)
        except ValidationError as e:
            self.logger.warning("profile_unreadable", key=self.key, error=str(e))
            return BiometricProfile()

    def save(self, profile: BiometricProfile) -> None:
        self.store.set(self.key, profile.model_dump_json())


class SleepStateRepository:
    """
    Persists SleepTimerState as the ISO start instant under `sleep_start_time`.

    An absent key means the timer is idle. A value that cannot be parsed is
    logged and treated as idle rather than crashing the caller.
    """

    def __init__(self, store: KeyValueStore, user_id: str | None = None) -> None:
        self.store = store
        self.key = user_key(SLEEP_START_KEY, user_id)
        self.logger = logger.bind(component="sleep_state_repository")

    def load(self) -> SleepTimerState:
        raw = self.store.get(self.key)
        if raw is None:
            return SleepTimerState()
        try:
            return SleepTimerState(start=raw)
        except ValidationError as e:
            self.logger.warning("sleep_state_unreadable", key=self.key, value=raw, error=str(e))
            return SleepTimerState()

    def save(self, state: SleepTimerState) -> None:
        if state.start is None:
            self.store.delete(self.key)
        else:
            self.store.set(self.key, state.start.isoformat())
