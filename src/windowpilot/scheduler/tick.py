"""Per-minute scheduler tick.

Each tick runs two independent checks:
- auto-start: open a new usage window when the clock enters a trigger slot
- expiry warning: notify when the active window is about to end

Persisted state is re-read on every tick. In memory there is only the
warning dedup timestamp in `WarningState` and the last configuration that
loaded, which keeps warnings going when the config file breaks.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

from windowpilot.core.config import SchedulerConfig
from windowpilot.planning.trigger_optimizer import calculate_optimal_start_times
from windowpilot.planning.windows import (
    MINUTES_PER_DAY,
    WINDOW_SIZE,
    DayOfWeek,
    day_of_week,
    minute_of_day,
    minutes_to_time_string,
    parse_time_to_minutes,
    parse_timestamp,
    start_time_offset,
)

if TYPE_CHECKING:
    from windowpilot.core.config import Config
    from windowpilot.core.ports import (
        ActiveWindowProbe,
        SessionLauncher,
        StateStore,
        WindowNotifier,
    )

logger = logging.getLogger(__name__)

LAST_AUTO_START_KEY = "last_auto_start_time"
WINDOW_START_KEY = "current_window_start"
WINDOW_END_KEY = "current_window_end"


@dataclass
class WarningState:
    """When the last expiry warning was sent."""

    last_warning_at: datetime | None = None

    def can_warn(self, now: datetime, dedup_minutes: float) -> bool:
        # A warning time in the future means the clock moved back
        if self.last_warning_at is None or now < self.last_warning_at:
            return True
        return now - self.last_warning_at >= timedelta(minutes=dedup_minutes)

    def record(self, now: datetime) -> None:
        self.last_warning_at = now


@dataclass
class TickResult:
    """What a single tick did."""

    auto_started: bool = False
    trigger: str | None = None
    warned_minutes: int | None = None
    skipped_reason: str | None = None


@dataclass
class _TriggerSlot:
    offset: int  # Minutes relative to today's midnight, may fall outside [0, 1440)
    day: DayOfWeek

    @property
    def formatted(self) -> str:
        return minutes_to_time_string(self.offset)

    def contains(self, now_minute: float) -> bool:
        return self.offset <= now_minute < self.offset + WINDOW_SIZE


def triggers_for_day(config: Config, day: DayOfWeek) -> list[int]:
    """Trigger offsets for a weekday relative to that day's midnight.

    Working hours take precedence when enabled and configured for the day;
    otherwise the day's persisted start time is the single trigger. A
    persisted evening time later than the day's work start is that day's
    previous-evening anchor and comes back negative.
    """
    working_hours = config.working_hours
    hours = working_hours.hours_for(day)
    if working_hours.enabled and day in working_hours.work_days and hours is not None:
        triggers = calculate_optimal_start_times(hours.start, hours.end)
        if triggers:
            return triggers

    legacy = parse_time_to_minutes(config.optimal_start_times.get(day))
    if legacy is None:
        return []
    work_start = hours.start_minutes if hours is not None and hours.is_valid else None
    return [start_time_offset(legacy, work_start)]


def trigger_slots(config: Config, now: datetime) -> list[_TriggerSlot]:
    """Triggers from yesterday, today and tomorrow, relative to today.

    Windows that straddle midnight are then matched by plain comparison.
    """
    today = day_of_week(now)
    slots = []
    for shift in (-1, 0, 1):
        day = today.shifted(shift)
        for trigger in triggers_for_day(config, day):
            slots.append(_TriggerSlot(offset=trigger + shift * MINUTES_PER_DAY, day=day))
    return slots


class SchedulerTick:
    """Auto-start and expiry-warning checks, run once per interval."""

    def __init__(
        self,
        config_provider: Callable[[], Config],
        state: StateStore,
        probe: ActiveWindowProbe,
        launcher: SessionLauncher,
        notifier: WindowNotifier,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config_provider = config_provider
        self.state = state
        self.probe = probe
        self.launcher = launcher
        self.notifier = notifier
        self.clock = clock
        self.warning_state = WarningState()
        self._last_config: Config | None = None
        self._pending: set[asyncio.Task] = set()

    async def tick(self, now: datetime | None = None) -> TickResult:
        now = now or self.clock()
        result = TickResult()

        try:
            config = self.config_provider()
            self._last_config = config
        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            result.skipped_reason = "config unavailable"
            config = None

        if config is not None:
            try:
                await self._check_auto_start(config, now, result)
            except Exception as e:
                logger.error(f"Auto-start check failed: {e}")
                result.skipped_reason = result.skipped_reason or "auto-start check failed"

        # Warnings still go out on the last good (or default) settings
        warning_config = config or self._last_config
        scheduler = warning_config.scheduler if warning_config is not None else SchedulerConfig()
        try:
            await self._check_expiry_warning(scheduler, now, result)
        except Exception as e:
            logger.error(f"Expiry warning check failed: {e}")

        return result

    async def _read_time(self, key: str) -> datetime | None:
        return parse_timestamp(await self.state.get_state(key))

    async def _check_auto_start(self, config: Config, now: datetime, result: TickResult) -> None:
        if not config.scheduler.notifications_enabled:
            result.skipped_reason = "scheduling disabled"
            return

        slots = trigger_slots(config, now)
        if not slots:
            result.skipped_reason = "no triggers configured"
            return

        window_end = await self._read_time(WINDOW_END_KEY)
        if window_end is not None and window_end > now:
            result.skipped_reason = "window active"
            return

        now_minute = minute_of_day(now)
        cooldown = timedelta(minutes=config.scheduler.autostart_cooldown_minutes)

        for slot in slots:
            if not slot.contains(now_minute):
                continue

            last_start = await self._read_time(LAST_AUTO_START_KEY)
            # A start time in the future means the clock moved back
            if last_start is not None and now >= last_start and now - last_start < cooldown:
                result.skipped_reason = "cooldown"
                return

            if await self._window_active():
                result.skipped_reason = "window active"
                return

            await self.state.set_state(LAST_AUTO_START_KEY, now.isoformat(timespec="seconds"))
            logger.info(f"Trigger {slot.formatted} ({slot.day.label}) matched, starting session")
            self._spawn(self._start_session(now))

            result.auto_started = True
            result.trigger = slot.formatted
            return

        result.skipped_reason = "outside trigger windows"

    async def _window_active(self) -> bool:
        cached = self.probe.peek_cached_active()
        if cached:
            return True
        # Unknown or stale cache; an error here propagates and skips the tick
        return await self.probe.fetch_fresh_active()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _start_session(self, started_at: datetime) -> None:
        try:
            launch = await self.launcher.start_session()
        except Exception as e:
            logger.error(f"Session start raised: {e}")
            return

        if not launch.success:
            logger.warning(f"Session start failed: {launch.message}")
            return

        window_end = started_at + timedelta(minutes=WINDOW_SIZE)
        try:
            await self.state.set_state(WINDOW_START_KEY, started_at.isoformat(timespec="seconds"))
            await self.state.set_state(WINDOW_END_KEY, window_end.isoformat(timespec="seconds"))
        except Exception as e:
            logger.error(f"Failed to record window bounds: {e}")
            return
        logger.info(f"Window started, ends at {window_end:%H:%M}")

    async def wait_pending(self) -> None:
        """Wait for in-flight session starts."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _check_expiry_warning(
        self, scheduler: SchedulerConfig, now: datetime, result: TickResult
    ) -> None:
        window_end = await self._read_time(WINDOW_END_KEY)
        if window_end is None or window_end <= now:
            return

        remaining = (window_end - now).total_seconds() / 60
        for threshold in scheduler.warning_thresholds:
            if not (threshold - 1 < remaining <= threshold):
                continue
            if not self.warning_state.can_warn(now, scheduler.warning_dedup_minutes):
                return

            minutes_left = max(1, round(remaining))
            delivered = await self.notifier.warn_window_ending(minutes_left)
            self.warning_state.record(now)
            result.warned_minutes = minutes_left
            if not delivered:
                logger.debug(f"Window-ending warning ({minutes_left} min) not delivered")
            return
