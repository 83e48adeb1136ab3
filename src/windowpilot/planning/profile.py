"""Usage profile reconstruction from cumulative hourly samples.

The store keeps the MAX cumulative usage seen in each hour slot. Usage is
cumulative within a window and resets at window boundaries, so the real
per-hour usage is the difference from the previous sample inside the same
window. Hours sampled outside any known window form their own group.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from windowpilot.planning.windows import QUOTA, parse_timestamp

logger = logging.getLogger(__name__)

HourlyProfile = Mapping[int, float]


@dataclass(frozen=True)
class HourlyUsageRecord:
    """Cumulative usage sample for one hour slot."""

    date_hour: str  # YYYY-MM-DD-HH
    usage_pct: float
    updated_at: str | None = None

    @property
    def timestamp(self) -> datetime | None:
        """Start of the hour slot, or None if `date_hour` is malformed."""
        return parse_date_hour(self.date_hour)

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> HourlyUsageRecord:
        return cls(
            date_hour=row["date_hour"],
            usage_pct=float(row.get("usage_pct") or 0.0),
            updated_at=row.get("updated_at"),
        )


@dataclass(frozen=True)
class UsageWindowRecord:
    """Historical usage window as persisted."""

    id: int
    window_start: str
    window_end: str
    usage_pct: float = 0.0  # Peak cumulative usage seen in the window

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> UsageWindowRecord:
        return cls(
            id=row["id"],
            window_start=row["window_start"],
            window_end=row["window_end"],
            usage_pct=float(row.get("usage_pct") or 0.0),
        )


@dataclass(frozen=True)
class UsageLogEntry:
    """Derived (non-cumulative) usage for a (day, hour) bucket."""

    day: int
    hour: int
    usage: float


def parse_date_hour(date_hour: str) -> datetime | None:
    try:
        return datetime.strptime(date_hour, "%Y-%m-%d-%H")
    except (TypeError, ValueError):
        return None


def format_date_hour(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d-%H")


def _window_bounds(
    windows: Iterable[UsageWindowRecord],
) -> list[tuple[int, datetime, datetime]]:
    bounds = []
    for window in windows:
        start = parse_timestamp(window.window_start)
        end = parse_timestamp(window.window_end)
        if start is None or end is None:
            logger.debug(f"Skipping window {window.id} with unparseable bounds")
            continue
        bounds.append((window.id, start, end))
    bounds.sort(key=lambda b: b[1])
    return bounds


def _find_window(
    moment: datetime, bounds: list[tuple[int, datetime, datetime]]
) -> int | None:
    for window_id, start, end in bounds:
        if start <= moment < end:
            return window_id
    return None


def compute_actual_hourly_usage(
    records: Iterable[HourlyUsageRecord],
    windows: Iterable[UsageWindowRecord],
) -> list[UsageLogEntry]:
    """Turn cumulative hourly samples into per-hour usage entries.

    The running baseline resets to 0 whenever the containing window changes,
    including moves into or out of "no window".
    """
    samples = []
    for record in records:
        moment = record.timestamp
        if moment is None:
            logger.debug(f"Skipping malformed hourly record: {record.date_hour!r}")
            continue
        samples.append((moment, record))

    if not samples:
        return []

    samples.sort(key=lambda s: s[0])
    bounds = _window_bounds(windows)

    days = sorted({moment.date() for moment, _ in samples})
    day_index = {day: i for i, day in enumerate(days)}

    result: list[UsageLogEntry] = []
    previous_window: int | None = None
    baseline = 0.0

    for moment, record in samples:
        window_id = _find_window(moment, bounds)
        if window_id != previous_window:
            baseline = 0.0
            previous_window = window_id

        usage = max(0.0, record.usage_pct - baseline)
        baseline = record.usage_pct

        result.append(
            UsageLogEntry(day=day_index[moment.date()], hour=moment.hour, usage=usage)
        )

    return result


def build_profile(log: Iterable[UsageLogEntry]) -> HourlyProfile:
    """Mean usage per hour across all days; hours without data are 0."""
    totals: dict[int, float] = defaultdict(float)
    counts: dict[int, int] = defaultdict(int)

    for entry in log:
        if 0 <= entry.hour < 24:
            totals[entry.hour] += entry.usage
            counts[entry.hour] += 1

    profile = {
        hour: (totals[hour] / counts[hour]) if counts[hour] else 0.0
        for hour in range(24)
    }
    return MappingProxyType(profile)


def build_profile_from_records(
    records: Iterable[HourlyUsageRecord],
    windows: Iterable[UsageWindowRecord],
) -> HourlyProfile:
    return build_profile(compute_actual_hourly_usage(records, windows))


def default_profile() -> HourlyProfile:
    """Conservative uniform profile spreading the quota over ~10 hours."""
    return MappingProxyType({hour: QUOTA / 10 for hour in range(24)})


def count_wait_events(
    records: Iterable[HourlyUsageRecord],
    windows: Iterable[UsageWindowRecord],
) -> int:
    """Count windows whose usage reached the quota before the window ended."""
    samples = [(r.timestamp, r.usage_pct) for r in records if r.timestamp is not None]
    wait_events = 0

    for _, start, end in _window_bounds(windows):
        peak = None
        for moment, usage in samples:
            if start <= moment and moment + timedelta(hours=1) < end:
                peak = usage if peak is None else max(peak, usage)
        if peak is not None and peak >= QUOTA:
            wait_events += 1

    return wait_events


def calculate_wasted_quota(
    records: Iterable[HourlyUsageRecord],
    windows: Iterable[UsageWindowRecord],
) -> float:
    """Sum of quota left unused when each window reset."""
    samples = sorted(
        ((r.timestamp, r.usage_pct) for r in records if r.timestamp is not None),
        key=lambda s: s[0],
    )
    wasted = 0.0

    for _, start, end in _window_bounds(windows):
        last_usage = None
        for moment, usage in samples:
            if start <= moment < end:
                last_usage = usage
        if last_usage is not None and last_usage < QUOTA:
            wasted += QUOTA - last_usage

    return wasted
