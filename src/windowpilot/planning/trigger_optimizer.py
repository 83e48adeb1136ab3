"""Window trigger optimization.

Finds the trigger time whose windows:
1. never exceed the quota (valid trigger),
2. cover the workday with the most usable windows (buckets),
3. leave the largest minimum slack as a tiebreaker.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from windowpilot.planning.profile import HourlyProfile, default_profile
from windowpilot.planning.windows import (
    MINUTES_PER_DAY,
    QUOTA,
    TIME_GRANULARITY,
    WINDOW_SIZE,
    Window,
    minutes_to_time_string,
    parse_time_to_minutes,
    windows_for_trigger,
)

logger = logging.getLogger(__name__)


@dataclass
class OptimizationResult:
    """Best trigger found for one workday."""

    trigger_time: int
    bucket_count: int
    min_slack: float
    is_valid: bool
    windows: list[Window] = field(default_factory=list)

    @property
    def trigger_time_formatted(self) -> str:
        return minutes_to_time_string(self.trigger_time)

    @property
    def window_start_times(self) -> list[str]:
        return [w.start_formatted for w in self.windows]

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger_time": self.trigger_time,
            "trigger_time_formatted": self.trigger_time_formatted,
            "bucket_count": self.bucket_count,
            "min_slack": self.min_slack,
            "is_valid": self.is_valid,
            "windows": [w.to_dict() for w in self.windows],
        }


def expected_window_usage(profile: HourlyProfile, window: Window) -> float:
    """Expected usage inside a window's work overlap.

    Each hour contributes its profile value weighted by the fraction of
    that hour covered by the overlap.
    """
    total = 0.0
    first_hour = window.work_overlap_start // 60
    last_hour = (window.work_overlap_end - 1) // 60

    for h in range(first_hour, last_hour + 1):
        overlap_start = max(h * 60, window.work_overlap_start)
        overlap_end = min((h + 1) * 60, window.work_overlap_end)
        if overlap_end > overlap_start:
            total += profile.get(h, 0.0) * (overlap_end - overlap_start) / 60

    return total


def _window_usages(profile: HourlyProfile, windows: list[Window]) -> list[float]:
    return [expected_window_usage(profile, w) for w in windows]


def is_valid_trigger(
    profile: HourlyProfile, trigger: int, work_start: int, work_end: int
) -> bool:
    """A trigger is valid if it yields windows and none exceeds the quota."""
    windows = windows_for_trigger(trigger, work_start, work_end)
    if not windows:
        return False
    return all(usage <= QUOTA for usage in _window_usages(profile, windows))


def min_slack(
    profile: HourlyProfile, trigger: int, work_start: int, work_end: int
) -> float:
    """Smallest QUOTA - usage over the trigger's windows (0 without windows)."""
    windows = windows_for_trigger(trigger, work_start, work_end)
    if not windows:
        return 0.0
    return min(QUOTA - usage for usage in _window_usages(profile, windows))


def candidate_triggers(work_start: int) -> list[int]:
    """Trigger candidates in search order.

    Every TIME_GRANULARITY step from midnight up to work start, then the
    previous evening's last WINDOW_SIZE minutes (as minutes of day).
    """
    candidates = list(range(0, work_start + 1, TIME_GRANULARITY))
    candidates.extend(
        t + MINUTES_PER_DAY for t in range(-WINDOW_SIZE, 0, TIME_GRANULARITY)
    )
    return candidates


def _check_bounds(work_start: int, work_end: int) -> None:
    if not (0 <= work_start < work_end < MINUTES_PER_DAY):
        raise ValueError(
            f"Invalid work hours: start={work_start}, end={work_end} "
            f"(need 0 <= start < end < {MINUTES_PER_DAY})"
        )


def find_optimal_trigger(
    profile: HourlyProfile, work_start: int, work_end: int
) -> OptimizationResult:
    """Find the best trigger time for a workday.

    Among valid candidates keep the one with the most buckets, then the
    largest minimum slack. Only strict improvements replace the current
    best, so the first candidate found wins exact ties. When no candidate
    is valid, falls back to triggering at work start.
    """
    _check_bounds(work_start, work_end)

    best: OptimizationResult | None = None

    for trigger in candidate_triggers(work_start):
        windows = windows_for_trigger(trigger, work_start, work_end)
        if not windows:
            continue

        usages = _window_usages(profile, windows)
        if any(usage > QUOTA for usage in usages):
            continue

        slack = min(QUOTA - usage for usage in usages)
        bucket_count = len(windows)

        if (
            best is None
            or bucket_count > best.bucket_count
            or (bucket_count == best.bucket_count and slack > best.min_slack)
        ):
            best = OptimizationResult(
                trigger_time=trigger % MINUTES_PER_DAY,
                bucket_count=bucket_count,
                min_slack=slack,
                is_valid=True,
                windows=windows,
            )

    if best is not None:
        return best

    logger.debug(
        f"No valid trigger for {minutes_to_time_string(work_start)}-"
        f"{minutes_to_time_string(work_end)}, falling back to work start"
    )
    windows = windows_for_trigger(work_start, work_start, work_end)
    return OptimizationResult(
        trigger_time=work_start,
        bucket_count=len(windows),
        min_slack=min_slack(profile, work_start, work_start, work_end),
        is_valid=False,
        windows=windows,
    )


def calculate_optimal_start_times(
    work_start: str,
    work_end: str,
    profile: HourlyProfile | None = None,
) -> list[int]:
    """Window start offsets for a workday given as HH:MM strings.

    Offsets are relative to the workday's midnight; a negative offset is a
    start on the previous evening. Returns [] for malformed or inverted hours.
    """
    start = parse_time_to_minutes(work_start)
    end = parse_time_to_minutes(work_end)
    if start is None or end is None or end <= start:
        return []

    result = find_optimal_trigger(
        profile if profile is not None else default_profile(), start, end
    )
    return [w.start for w in result.windows]
