"""Weekly usage patterns, baseline snapshots and impact statistics.

A lighter view than the trigger optimizer: group the hourly history by
weekday, find the busiest hours, and suggest a start time 15 minutes before
the earliest activity within three hours of each weekday's peak. The first
analysis also snapshots window statistics as a baseline, so later runs can
show what the schedule changed.
"""

from __future__ import annotations

import logging
import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Iterable

from windowpilot.planning.profile import HourlyUsageRecord, UsageWindowRecord
from windowpilot.planning.windows import (
    MINUTES_PER_DAY,
    QUOTA,
    WINDOW_SIZE,
    DayOfWeek,
    day_of_week,
    minutes_to_time_string,
    parse_timestamp,
)

if TYPE_CHECKING:
    from windowpilot.core.ports import BaselineStore

logger = logging.getLogger(__name__)

LEAD_MINUTES = 15
PEAK_LOOKBACK_HOURS = 3
FULL_CONFIDENCE_DAYS = 5

BASELINE_SAVED_AT_KEY = "baseline_saved_at"
BASELINE_DAYS_KEY = "baseline_days"
BASELINE_RECORD_COUNT_KEY = "baseline_record_count"
BASELINE_WINDOWS_PER_DAY_KEY = "avg_windows_per_day"
BASELINE_WINDOW_USAGE_KEY = "avg_window_usage"


@dataclass
class DailyUsage:
    """Max cumulative usage per active hour of one calendar day."""

    day: date
    hours: dict[int, float] = field(default_factory=dict)

    @property
    def active_hours(self) -> int:
        return len(self.hours)

    @property
    def avg_usage(self) -> float:
        return sum(self.hours.values()) / len(self.hours) if self.hours else 0.0

    @property
    def peak_hour(self) -> int | None:
        if not self.hours:
            return None
        return max(sorted(self.hours), key=self.hours.__getitem__)


@dataclass
class DayRecommendation:
    day: DayOfWeek
    start_time: str | None = None
    confidence: float = 0.0
    expected_usage: float = 0.0
    data_points: int = 0
    avg_active_hours: float = 0.0
    avg_usage: float = 0.0


@dataclass
class WeeklyPattern:
    recommendations: dict[DayOfWeek, DayRecommendation]
    most_active_day: DayOfWeek | None
    least_active_day: DayOfWeek | None
    average_daily_hours: float
    peak_hour: int | None

    def start_times(self) -> dict[DayOfWeek, str]:
        """Recommended start time for every weekday that has data."""
        return {
            day: rec.start_time
            for day, rec in self.recommendations.items()
            if rec.start_time is not None
        }


def aggregate_by_day(records: Iterable[HourlyUsageRecord]) -> dict[date, DailyUsage]:
    daily: dict[date, DailyUsage] = {}
    for record in records:
        moment = record.timestamp
        if moment is None:
            continue
        usage = daily.setdefault(moment.date(), DailyUsage(day=moment.date()))
        usage.hours[moment.hour] = record.usage_pct
    return dict(sorted(daily.items()))


def group_by_weekday(daily: Iterable[DailyUsage]) -> dict[DayOfWeek, list[DailyUsage]]:
    grouped: dict[DayOfWeek, list[DailyUsage]] = {day: [] for day in DayOfWeek}
    for usage in daily:
        grouped[day_of_week(datetime.combine(usage.day, datetime.min.time()))].append(usage)
    return grouped


def _busiest_hour(counts: Counter) -> int | None:
    best, best_count = None, 0
    for hour in range(24):
        if counts[hour] > best_count:
            best, best_count = hour, counts[hour]
    return best


def recommend_day(day: DayOfWeek, usage: list[DailyUsage]) -> DayRecommendation:
    """Heuristic start time for one weekday from its past days."""
    recommendation = DayRecommendation(day=day)
    if not usage:
        return recommendation

    recommendation.avg_active_hours = sum(u.active_hours for u in usage) / len(usage)
    recommendation.avg_usage = sum(u.avg_usage for u in usage) / len(usage)

    counts: Counter = Counter()
    totals: dict[int, float] = defaultdict(float)
    for daily in usage:
        for hour, pct in daily.hours.items():
            counts[hour] += 1
            totals[hour] += pct

    peak = _busiest_hour(counts)
    if peak is None:
        return recommendation

    start_hour = peak
    for h in range(peak - PEAK_LOOKBACK_HOURS, peak):
        if counts[h % 24] > 0:
            start_hour = h % 24
            break

    start = (start_hour * 60 - LEAD_MINUTES) % MINUTES_PER_DAY
    active_days = sum(1 for u in usage if u.hours)

    recommendation.start_time = minutes_to_time_string(start)
    recommendation.confidence = min(1.0, active_days / FULL_CONFIDENCE_DAYS)
    recommendation.expected_usage = min(float(QUOTA), sum(totals.values()) / len(counts))
    recommendation.data_points = sum(counts.values())
    return recommendation


def analyze_weekly_patterns(records: Iterable[HourlyUsageRecord]) -> WeeklyPattern:
    grouped = group_by_weekday(aggregate_by_day(records).values())

    recommendations: dict[DayOfWeek, DayRecommendation] = {}
    most_active: DayOfWeek | None = None
    least_active: DayOfWeek | None = None
    most_hours, least_hours = 0.0, math.inf
    total_hours, days_with_data = 0.0, 0
    hour_counts: Counter = Counter()

    for day in DayOfWeek:
        usage = grouped[day]
        recommendation = recommend_day(day, usage)
        recommendations[day] = recommendation
        if not usage:
            continue

        hours = recommendation.avg_active_hours
        total_hours += hours
        days_with_data += 1
        if hours > most_hours:
            most_active, most_hours = day, hours
        if hours < least_hours:
            least_active, least_hours = day, hours

        for daily in usage:
            hour_counts.update(daily.hours.keys())

    return WeeklyPattern(
        recommendations=recommendations,
        most_active_day=most_active,
        least_active_day=least_active,
        average_daily_hours=total_hours / days_with_data if days_with_data else 0.0,
        peak_hour=_busiest_hour(hour_counts),
    )


def format_pattern_summary(pattern: WeeklyPattern) -> str:
    def label(day: DayOfWeek | None) -> str:
        return day.label if day else "-"

    peak = f"{pattern.peak_hour:02d}:00" if pattern.peak_hour is not None else "-"
    lines = [
        "Weekly Usage Patterns",
        "=" * 50,
        "",
        f"Average daily activity: {pattern.average_daily_hours:.1f} hours",
        f"Peak activity hour:     {peak}",
        f"Most active day:        {label(pattern.most_active_day)}",
        f"Least active day:       {label(pattern.least_active_day)}",
        "",
        "Recommended Start Times",
        "-" * 50,
    ]

    for day in DayOfWeek:
        rec = pattern.recommendations.get(day)
        if rec is None or rec.start_time is None:
            lines.append(f"  {day.label:<12} No data")
            continue
        lines.append(
            f"  {day.label:<12} {rec.start_time}  ({round(rec.confidence * 100)}% confidence, "
            f"~{round(rec.expected_usage)}% avg usage)"
        )

    return "\n".join(lines)


@dataclass
class BaselineStats:
    """Window statistics captured before the schedule took over."""

    saved_at: datetime
    days: int
    record_count: int
    windows_per_day: float
    avg_window_usage: float

    def to_stats(self) -> dict[str, float]:
        return {
            BASELINE_SAVED_AT_KEY: self.saved_at.timestamp(),
            BASELINE_DAYS_KEY: self.days,
            BASELINE_RECORD_COUNT_KEY: self.record_count,
            BASELINE_WINDOWS_PER_DAY_KEY: self.windows_per_day,
            BASELINE_WINDOW_USAGE_KEY: self.avg_window_usage,
        }


def calculate_baseline(
    record_count: int,
    windows: list[UsageWindowRecord],
    days: int,
    now: datetime,
) -> BaselineStats | None:
    """Baseline from the learning period, or None without any window."""
    if not windows:
        return None
    return BaselineStats(
        saved_at=now,
        days=days,
        record_count=record_count,
        windows_per_day=len(windows) / max(days, 1),
        avg_window_usage=sum(w.usage_pct for w in windows) / len(windows),
    )


async def load_baseline(store: BaselineStore) -> BaselineStats | None:
    saved_at = await store.get_baseline_stat(BASELINE_SAVED_AT_KEY)
    if saved_at is None:
        return None
    return BaselineStats(
        saved_at=datetime.fromtimestamp(saved_at),
        days=int(await store.get_baseline_stat(BASELINE_DAYS_KEY) or 0),
        record_count=int(await store.get_baseline_stat(BASELINE_RECORD_COUNT_KEY) or 0),
        windows_per_day=await store.get_baseline_stat(BASELINE_WINDOWS_PER_DAY_KEY) or 0.0,
        avg_window_usage=await store.get_baseline_stat(BASELINE_WINDOW_USAGE_KEY) or 0.0,
    )


async def ensure_baseline(
    store: BaselineStore,
    record_count: int,
    windows: list[UsageWindowRecord],
    days: int,
    now: datetime,
) -> BaselineStats | None:
    """Save a baseline on the first analysis; returns it only when newly saved."""
    if await load_baseline(store) is not None:
        return None

    baseline = calculate_baseline(record_count, windows, days, now)
    if baseline is None:
        logger.debug("No windows recorded yet, baseline not saved")
        return None

    for key, value in baseline.to_stats().items():
        await store.set_baseline_stat(key, value)
    logger.info(
        f"Baseline saved: {baseline.windows_per_day:.2f} windows/day, "
        f"{baseline.avg_window_usage:.0f}% avg window usage"
    )
    return baseline


@dataclass
class ImpactSummary:
    """Window statistics since the baseline compared against it."""

    days: int
    window_count: int
    windows_per_day_before: float
    windows_per_day_after: float
    usage_before: float
    usage_after: float

    @property
    def windows_avoided(self) -> int:
        expected = self.windows_per_day_before * self.days
        return max(0, round(expected - self.window_count))

    @property
    def hours_saved(self) -> float:
        return self.windows_avoided * WINDOW_SIZE / 60

    @property
    def usage_change(self) -> float:
        return self.usage_after - self.usage_before


def compute_impact(
    baseline: BaselineStats,
    windows: Iterable[UsageWindowRecord],
    now: datetime,
) -> ImpactSummary | None:
    """Compare windows opened after the baseline with the baseline itself."""
    since = []
    for window in windows:
        start = parse_timestamp(window.window_start)
        if start is not None and start >= baseline.saved_at:
            since.append(window)
    if not since:
        return None

    elapsed = (now - baseline.saved_at).total_seconds() / 86400
    days = max(1, math.ceil(elapsed))
    return ImpactSummary(
        days=days,
        window_count=len(since),
        windows_per_day_before=baseline.windows_per_day,
        windows_per_day_after=len(since) / days,
        usage_before=baseline.avg_window_usage,
        usage_after=sum(w.usage_pct for w in since) / len(since),
    )
