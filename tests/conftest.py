"""Shared fixtures and in-memory fakes."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from windowpilot.core.config import Config, ConfigStore
from windowpilot.core.ports import LaunchResult
from windowpilot.planning.profile import HourlyUsageRecord, UsageWindowRecord
from windowpilot.storage.database import Database

# 2026-01-05 is a Monday
MONDAY = datetime(2026, 1, 5)


class FakeStateStore:
    def __init__(self, values: dict[str, str] | None = None):
        self.values = dict(values or {})

    async def get_state(self, key: str) -> str | None:
        return self.values.get(key)

    async def set_state(self, key: str, value: str | None) -> None:
        self.values[key] = value


class BrokenStateStore:
    async def get_state(self, key: str) -> str | None:
        raise RuntimeError("state unavailable")

    async def set_state(self, key: str, value: str | None) -> None:
        raise RuntimeError("state unavailable")


class FakeProbe:
    def __init__(self, cached: bool | None = None, fresh: bool = False, error: Exception | None = None):
        self.cached = cached
        self.fresh = fresh
        self.error = error
        self.fetch_calls = 0

    def peek_cached_active(self) -> bool | None:
        return self.cached

    async def fetch_fresh_active(self) -> bool:
        self.fetch_calls += 1
        if self.error is not None:
            raise self.error
        return self.fresh


class FakeLauncher:
    def __init__(self, success: bool = True):
        self.success = success
        self.calls = 0

    async def start_session(self) -> LaunchResult:
        self.calls += 1
        if self.success:
            return LaunchResult(success=True, message="ok", greeting="Hi.")
        return LaunchResult(success=False, message="boom")


class FakeNotifier:
    def __init__(self):
        self.warnings: list[int] = []

    async def warn_window_ending(self, minutes_left: int) -> bool:
        self.warnings.append(minutes_left)
        return True


class FakeHistory:
    def __init__(self, records=None, windows=None):
        self.records: list[HourlyUsageRecord] = list(records or [])
        self.windows: list[UsageWindowRecord] = list(windows or [])

    async def get_hourly_usage_since(self, since: datetime) -> list[HourlyUsageRecord]:
        return list(self.records)

    async def get_windows_since(self, since: datetime) -> list[UsageWindowRecord]:
        return list(self.windows)


class FakeBaseline:
    def __init__(self, values: dict[str, float] | None = None):
        self.values = dict(values or {})

    async def get_baseline_stat(self, key: str) -> float | None:
        return self.values.get(key)

    async def set_baseline_stat(self, key: str, value: float) -> None:
        self.values[key] = value


@pytest.fixture
def config_store(tmp_path: Path) -> ConfigStore:
    store = ConfigStore(tmp_path / "config" / "config.yaml")
    store.save(Config(data_dir=tmp_path / "data", log_dir=tmp_path / "logs", config_dir=tmp_path / "config"))
    return store


@pytest.fixture
async def db(tmp_path: Path):
    database = Database(tmp_path / "test.db")
    await database.connect()
    try:
        yield database
    finally:
        await database.close()
