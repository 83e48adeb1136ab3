"""Interfaces the scheduler and learner depend on.

The SQLite `Database` implements the store protocols; tests use in-memory
fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from windowpilot.planning.profile import HourlyUsageRecord, UsageWindowRecord


class HistoryStore(Protocol):
    async def get_hourly_usage_since(self, since: datetime) -> list[HourlyUsageRecord]: ...

    async def get_windows_since(self, since: datetime) -> list[UsageWindowRecord]: ...


class BaselineStore(Protocol):
    async def get_baseline_stat(self, key: str) -> float | None: ...

    async def set_baseline_stat(self, key: str, value: float) -> None: ...


class StateStore(Protocol):
    """String key/value store for persisted scheduler state."""

    async def get_state(self, key: str) -> str | None: ...

    async def set_state(self, key: str, value: str | None) -> None: ...


class ActiveWindowProbe(Protocol):
    """Two-stage "is a usage window active right now" check."""

    def peek_cached_active(self) -> bool | None:
        """Cheap cached answer; None when the cache is missing or stale."""
        ...

    async def fetch_fresh_active(self) -> bool:
        """Expensive fresh lookup. May raise on I/O failure."""
        ...


@dataclass
class LaunchResult:
    """Outcome of a start-session attempt."""

    success: bool
    message: str
    greeting: str | None = None


class SessionLauncher(Protocol):
    async def start_session(self) -> LaunchResult: ...


class WindowNotifier(Protocol):
    async def warn_window_ending(self, minutes_left: int) -> bool: ...
