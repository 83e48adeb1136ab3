"""Minute-of-day arithmetic and usage window boundaries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

QUOTA = 100  # Usage budget per window (normalized to 100%)
WINDOW_SIZE = 300  # Window length in minutes (5 hours)
TIME_GRANULARITY = 15  # Trigger search step in minutes
MINUTES_PER_DAY = 24 * 60
MAX_WINDOWS_PER_TRIGGER = 6


class DayOfWeek(str, Enum):
    """Weekday keys used in configuration and persisted start times."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    def shifted(self, days: int) -> DayOfWeek:
        """Return the weekday `days` away from this one."""
        members = list(DayOfWeek)
        return members[(members.index(self) + days) % 7]


def day_of_week(moment: datetime) -> DayOfWeek:
    """Weekday of a datetime (Monday first, as datetime.weekday())."""
    return list(DayOfWeek)[moment.weekday()]


def minute_of_day(moment: datetime) -> float:
    """Minutes since local midnight, including seconds as a fraction."""
    return moment.hour * 60 + moment.minute + moment.second / 60


def parse_time_to_minutes(text: str | None) -> int | None:
    """Parse HH:MM into minutes from midnight.

    Returns None for anything that is not a valid 24h time.
    """
    if not isinstance(text, str):
        return None

    parts = text.strip().split(":")
    if len(parts) != 2:
        return None

    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        return None

    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None
    return hours * 60 + minutes


def minutes_to_time_string(minutes: int) -> str:
    """Format minutes from midnight as HH:MM, wrapping modulo 24h."""
    normalized = int(minutes) % MINUTES_PER_DAY
    hours, mins = divmod(normalized, 60)
    return f"{hours:02d}:{mins:02d}"


def is_valid_time_string(text: str | None) -> bool:
    return parse_time_to_minutes(text) is not None


def circular_difference(target: int, origin: int) -> int:
    """Signed shortest distance on the 24h clock from origin to target."""
    diff = (target - origin) % MINUTES_PER_DAY
    if diff > MINUTES_PER_DAY // 2:
        diff -= MINUTES_PER_DAY
    return diff


@dataclass(frozen=True)
class Window:
    """A usage window and its intersection with work hours.

    `start` and `end` are minutes relative to the planned day's midnight and
    may be negative for a window anchored the previous evening.
    """

    start: int
    end: int
    work_overlap_start: int
    work_overlap_end: int

    @property
    def overlap_minutes(self) -> int:
        return self.work_overlap_end - self.work_overlap_start

    @property
    def start_formatted(self) -> str:
        return minutes_to_time_string(self.start)

    def to_dict(self) -> dict[str, int | str]:
        return {
            "start": self.start,
            "end": self.end,
            "start_formatted": self.start_formatted,
            "work_overlap_start": self.work_overlap_start,
            "work_overlap_end": self.work_overlap_end,
        }


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def effective_offset(trigger: int, work_start: int) -> int:
    """Map a trigger candidate to its offset from the planned day's midnight.

    Candidates later than work start can only be previous-evening anchors
    (the search never looks past work start on the same day), so they are
    shifted back by one day.
    """
    trigger = int(trigger) % MINUTES_PER_DAY
    if trigger > work_start:
        return trigger - MINUTES_PER_DAY
    return trigger


def start_time_offset(start: int, work_start: int | None) -> int:
    """Offset of a persisted start time from its own day's midnight.

    A learned start time in the last WINDOW_SIZE minutes of the day that is
    later than work start belongs to the previous evening, as in
    `effective_offset`. Without known work hours the time is taken as is.
    """
    start = int(start) % MINUTES_PER_DAY
    if (
        work_start is not None
        and start > work_start
        and start >= MINUTES_PER_DAY - WINDOW_SIZE
    ):
        return start - MINUTES_PER_DAY
    return start


def windows_for_trigger(trigger: int, work_start: int, work_end: int) -> list[Window]:
    """Generate the windows a trigger produces across one workday.

    Only windows with a positive overlap with [work_start, work_end) are kept.
    """
    origin = effective_offset(trigger, work_start)
    windows: list[Window] = []

    for n in range(MAX_WINDOWS_PER_TRIGGER):
        window_start = origin + WINDOW_SIZE * n
        window_end = window_start + WINDOW_SIZE

        overlap_start = _clamp(window_start, work_start, work_end)
        overlap_end = _clamp(window_end, work_start, work_end)

        if overlap_end > overlap_start:
            windows.append(
                Window(
                    start=window_start,
                    end=window_end,
                    work_overlap_start=overlap_start,
                    work_overlap_end=overlap_end,
                )
            )

    return windows


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO timestamp into a naive local datetime.

    Aware timestamps are converted to local time. Returns None when the
    value is missing or unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        moment = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None

    if moment.tzinfo is not None:
        moment = moment.astimezone().replace(tzinfo=None)
    return moment
