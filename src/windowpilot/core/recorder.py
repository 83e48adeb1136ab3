"""Ingestion of usage samples into history and window tracking."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

from windowpilot.planning.windows import WINDOW_SIZE, parse_timestamp
from windowpilot.scheduler.tick import WINDOW_END_KEY, WINDOW_START_KEY

if TYPE_CHECKING:
    from windowpilot.scheduler.active_window import UsageCacheProbe
    from windowpilot.storage.database import Database

logger = logging.getLogger(__name__)

# A cached reset time closer than this belongs to a window that is ending
MIN_CACHED_RESET_LEAD = timedelta(minutes=30)


@dataclass
class RecordResult:
    usage_pct: float | None
    window_id: int | None
    window_started: bool
    window_end: datetime | None


class UsageRecorder:
    """Records a usage observation and keeps the current window up to date.

    With no explicit percentage or reset time the values come from the
    usage cache when it is fresh.
    """

    def __init__(
        self,
        db: Database,
        probe: UsageCacheProbe | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.probe = probe
        self.clock = clock

    async def record(
        self,
        usage_pct: float | None = None,
        resets_at: datetime | None = None,
    ) -> RecordResult:
        now = self.clock()
        snapshot = self.probe.cached_usage() if self.probe is not None else None

        from_cache = False
        if resets_at is None and snapshot is not None and snapshot.resets_at is not None:
            resets_at = snapshot.resets_at
            from_cache = True
        if usage_pct is None and snapshot is not None:
            usage_pct = snapshot.percentage

        if usage_pct is not None:
            if not 0 <= usage_pct <= 100:
                raise ValueError(f"Usage percentage must be within 0-100, got {usage_pct}")
            await self.db.record_usage_sample(usage_pct, now)

        current = await self.db.get_current_window(now)
        if current is None:
            window_end = now + timedelta(minutes=WINDOW_SIZE)
            if resets_at is not None and resets_at - now > MIN_CACHED_RESET_LEAD:
                window_end = resets_at
            elif from_cache:
                # Reset time is from a window that already ended
                usage_pct = None

            window_id = await self.db.create_window(now, window_end)
            await self.db.set_state(WINDOW_START_KEY, now.isoformat(timespec="seconds"))
            await self.db.set_state(WINDOW_END_KEY, window_end.isoformat(timespec="seconds"))
            if usage_pct is not None:
                await self.db.update_window_usage(window_id, usage_pct)

            logger.info(f"Usage window {window_id} opened until {window_end:%H:%M}")
            return RecordResult(usage_pct, window_id, True, window_end)

        if usage_pct is not None:
            await self.db.update_window_usage(current.id, usage_pct)

        window_end = parse_timestamp(current.window_end)
        if resets_at is not None:
            resets_at = resets_at.replace(microsecond=0)
        if resets_at is not None and resets_at > now and resets_at != window_end:
            logger.debug(f"Window {current.id} end moved to {resets_at.isoformat()}")
            await self.db.update_window_end(current.id, resets_at)
            await self.db.set_state(WINDOW_END_KEY, resets_at.isoformat(timespec="seconds"))
            window_end = resets_at

        return RecordResult(usage_pct, current.id, False, window_end)
