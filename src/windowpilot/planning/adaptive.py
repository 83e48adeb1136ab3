"""Adaptive adjustment of optimal start times.

Every `interval_days` the learner rebuilds the usage profile from recent
history, re-runs the trigger optimizer for each configured work day and
blends the recommendation into the persisted start times with an
exponential moving average, so a single unusual week only nudges the
schedule.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from windowpilot.planning.profile import build_profile_from_records
from windowpilot.planning.trigger_optimizer import find_optimal_trigger
from windowpilot.planning.windows import (
    DayOfWeek,
    circular_difference,
    minutes_to_time_string,
    parse_time_to_minutes,
)

if TYPE_CHECKING:
    from windowpilot.core.config import ConfigStore
    from windowpilot.core.ports import BaselineStore, HistoryStore

logger = logging.getLogger(__name__)

LAST_ADJUSTMENT_KEY = "last_adjustment_timestamp"
ADJUSTMENT_COUNT_KEY = "adjustment_count"

SECONDS_PER_DAY = 24 * 60 * 60


class Trend(str, Enum):
    """Direction the recommended start times are drifting."""

    EARLIER = "earlier"
    LATER = "later"
    STABLE = "stable"


@dataclass
class DayChange:
    """Start time change for one weekday."""

    day: DayOfWeek
    old_time: str | None
    new_time: str | None  # Raw optimizer recommendation
    blended_time: str | None  # Value written back

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day.value,
            "old_time": self.old_time,
            "new_time": self.new_time,
            "blended_time": self.blended_time,
        }


@dataclass
class Diagnostics:
    """Informational details about an adjustment run."""

    profile_built: bool = False
    sample_count: int = 0
    days_optimized: int = 0
    bucket_count: int = 0
    min_slack: float = 0.0
    is_valid: bool = False
    avg_shift_minutes: float | None = None
    trend: Trend = Trend.STABLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile_built": self.profile_built,
            "sample_count": self.sample_count,
            "days_optimized": self.days_optimized,
            "bucket_count": self.bucket_count,
            "min_slack": self.min_slack,
            "is_valid": self.is_valid,
            "avg_shift_minutes": self.avg_shift_minutes,
            "trend": self.trend.value,
        }


@dataclass
class AdjustmentResult:
    """Outcome of an adaptive adjustment run."""

    adjusted: bool
    reason: str
    changes: list[DayChange] = field(default_factory=list)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "adjusted": self.adjusted,
            "reason": self.reason,
            "changes": [c.to_dict() for c in self.changes],
            "diagnostics": self.diagnostics.to_dict(),
        }


@dataclass
class LastAdjustmentInfo:
    timestamp: datetime | None
    count: int
    days_since: int | None


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def blend_times(current: str | None, new: str | None, alpha: float = 0.3) -> str | None:
    """EMA-blend a new start time into the current one.

    The blend moves along the shorter arc of the 24h clock. A missing side
    falls back to the other one unchanged.
    """
    current_minutes = parse_time_to_minutes(current)
    new_minutes = parse_time_to_minutes(new)

    if new_minutes is None:
        return None if current_minutes is None else minutes_to_time_string(current_minutes)
    if current_minutes is None:
        return minutes_to_time_string(new_minutes)

    shift = circular_difference(new_minutes, current_minutes)
    return minutes_to_time_string(_round_half_up(current_minutes + alpha * shift))


def classify_trend(avg_shift: float | None, threshold: float = 15) -> Trend:
    if avg_shift is None:
        return Trend.STABLE
    if avg_shift < -threshold:
        return Trend.EARLIER
    if avg_shift > threshold:
        return Trend.LATER
    return Trend.STABLE


class AdaptiveLearner:
    """Periodically re-optimizes and blends persisted start times."""

    def __init__(
        self,
        history: HistoryStore,
        baseline: BaselineStore,
        config_store: ConfigStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.history = history
        self.baseline = baseline
        self.config_store = config_store
        self.clock = clock

    async def should_run_adjustment(self) -> bool:
        """True when enabled and the last run is older than `interval_days`."""
        config = self.config_store.load()
        if not config.adaptive.auto_adjust_enabled:
            return False

        last = await self.baseline.get_baseline_stat(LAST_ADJUSTMENT_KEY)
        if last is None:
            return True

        days_since = (self.clock().timestamp() - last) / SECONDS_PER_DAY
        return days_since >= config.adaptive.interval_days

    async def get_last_adjustment_info(self) -> LastAdjustmentInfo:
        last = await self.baseline.get_baseline_stat(LAST_ADJUSTMENT_KEY)
        count = await self.baseline.get_baseline_stat(ADJUSTMENT_COUNT_KEY)

        if last is None:
            return LastAdjustmentInfo(timestamp=None, count=0, days_since=None)

        days_since = int((self.clock().timestamp() - last) // SECONDS_PER_DAY)
        return LastAdjustmentInfo(
            timestamp=datetime.fromtimestamp(last),
            count=int(count or 0),
            days_since=days_since,
        )

    async def run_adaptive_adjustment(self, dry_run: bool = False) -> AdjustmentResult:
        """Re-optimize every configured work day and blend the results.

        Never raises; every early exit carries a human-readable reason.
        """
        config = self.config_store.load()
        adaptive = config.adaptive
        working_hours = config.working_hours

        if not adaptive.auto_adjust_enabled:
            return AdjustmentResult(adjusted=False, reason="Auto-adjustment is disabled")

        if working_hours.enabled and not working_hours.auto_adjust_from_usage:
            return AdjustmentResult(
                adjusted=False,
                reason="Manual working hours configured without usage blending",
            )

        now = self.clock()
        since = now - timedelta(days=adaptive.lookback_days)
        try:
            records = await self.history.get_hourly_usage_since(since)
            windows = await self.history.get_windows_since(since) if records else []
        except Exception as e:
            logger.error(f"Failed to read usage history: {e}")
            return AdjustmentResult(adjusted=False, reason=f"Could not read usage history: {e}")

        diagnostics = Diagnostics(sample_count=len(records))
        if len(records) < adaptive.min_samples:
            return AdjustmentResult(
                adjusted=False,
                reason=(
                    f"Insufficient usage data for optimization "
                    f"({len(records)}/{adaptive.min_samples} hourly samples)"
                ),
                diagnostics=diagnostics,
            )

        profile = build_profile_from_records(records, windows)
        diagnostics.profile_built = True

        changes: list[DayChange] = []
        updates: dict[DayOfWeek, str | None] = {}
        shifts: list[int] = []

        for day in working_hours.work_days:
            hours = working_hours.hours_for(day)
            if hours is None or not hours.is_valid:
                continue

            result = find_optimal_trigger(profile, hours.start_minutes, hours.end_minutes)
            diagnostics.days_optimized += 1
            diagnostics.bucket_count = result.bucket_count
            diagnostics.min_slack = result.min_slack
            diagnostics.is_valid = result.is_valid

            new_time = result.windows[0].start_formatted if result.windows else None
            current = config.optimal_start_times.get(day)
            blended = blend_times(current, new_time, adaptive.alpha)

            current_minutes = parse_time_to_minutes(current)
            new_minutes = parse_time_to_minutes(new_time)
            if current_minutes is not None and new_minutes is not None:
                shifts.append(circular_difference(new_minutes, current_minutes))

            if blended != current:
                changes.append(
                    DayChange(day=day, old_time=current, new_time=new_time, blended_time=blended)
                )
                updates[day] = blended

        if shifts:
            diagnostics.avg_shift_minutes = sum(shifts) / len(shifts)
        diagnostics.trend = classify_trend(
            diagnostics.avg_shift_minutes, adaptive.trend_threshold_minutes
        )

        if diagnostics.days_optimized == 0:
            return AdjustmentResult(
                adjusted=False,
                reason="No valid working hours configured to optimize",
                diagnostics=diagnostics,
            )

        if not changes:
            return AdjustmentResult(
                adjusted=False,
                reason="No significant change - current times are already optimal",
                diagnostics=diagnostics,
            )

        if dry_run:
            return AdjustmentResult(
                adjusted=False,
                reason=f"Dry run: {len(changes)} day(s) would change",
                changes=changes,
                diagnostics=diagnostics,
            )

        try:
            self.config_store.update_optimal_start_times(updates)
            await self.baseline.set_baseline_stat(LAST_ADJUSTMENT_KEY, now.timestamp())
            count = await self.baseline.get_baseline_stat(ADJUSTMENT_COUNT_KEY) or 0
            await self.baseline.set_baseline_stat(ADJUSTMENT_COUNT_KEY, count + 1)
        except Exception as e:
            logger.error(f"Failed to persist adjusted start times: {e}")
            return AdjustmentResult(
                adjusted=False,
                reason=f"Could not save adjusted start times: {e}",
                changes=changes,
                diagnostics=diagnostics,
            )

        logger.info(
            f"Adjusted {len(changes)} day(s), trend {diagnostics.trend.value}"
        )
        return AdjustmentResult(
            adjusted=True,
            reason=f"Adjusted {len(changes)} day(s)",
            changes=changes,
            diagnostics=diagnostics,
        )


def format_adjustment_result(result: AdjustmentResult) -> str:
    """Plain-text report of an adjustment run."""
    lines = ["Adaptive Adjustment Report", "-" * 50, ""]

    if result.changes:
        lines.append(f"Status: {result.reason}")
        lines.append("")
        lines.append("Changes:")
        for change in result.changes:
            lines.append(
                f"  {change.day.label:<12} {change.old_time or '(none)'} -> "
                f"{change.blended_time or '(none)'}  (recommended {change.new_time or '(none)'})"
            )
    else:
        lines.append("Status: No changes made")
        lines.append(f"Reason: {result.reason}")

    diagnostics = result.diagnostics
    if diagnostics.profile_built:
        lines.append("")
        lines.append("Optimization:")
        lines.append(f"  Samples:    {diagnostics.sample_count}")
        lines.append(f"  Buckets:    {diagnostics.bucket_count}")
        lines.append(f"  Min slack:  {diagnostics.min_slack:.0f}%")
        lines.append(f"  Valid:      {'yes' if diagnostics.is_valid else 'no (fallback used)'}")
        lines.append(f"  Trend:      {diagnostics.trend.value}")

    return "\n".join(lines)
