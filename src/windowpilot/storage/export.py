"""Export of the usage history to JSON or CSV."""

from __future__ import annotations

import csv
import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any

from windowpilot.core.config import Config
from windowpilot.planning.profile import HourlyUsageRecord, UsageWindowRecord
from windowpilot.storage.database import Database

logger = logging.getLogger(__name__)

HOURLY_COLUMNS = ["date_hour", "usage_pct", "updated_at"]
WINDOW_COLUMNS = ["id", "window_start", "window_end", "usage_pct"]


async def collect_export(db: Database, config: Config, now: datetime | None = None) -> dict[str, Any]:
    """Everything stored: config, scheduler state, counters, history."""
    now = now or datetime.now()
    return {
        "exported_at": now.isoformat(timespec="seconds"),
        "config": config.model_dump(mode="json", exclude_none=True),
        "state": await db.get_all_state(),
        "baseline": await db.get_all_baseline_stats(),
        "hourly_usage": [asdict(r) for r in await db.get_all_hourly_usage()],
        "windows": [asdict(w) for w in await db.get_all_windows()],
    }


def write_json(output: Path, data: dict[str, Any]) -> Path:
    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, "w") as f:
        json.dump(data, f, indent=2)
    logger.info(f"Exported {len(data.get('hourly_usage', []))} hourly records to {output}")
    return output


def write_csv(
    output: Path,
    hourly: list[HourlyUsageRecord],
    windows: list[UsageWindowRecord],
) -> list[Path]:
    """Write `<stem>-hourly.csv` and `<stem>-windows.csv` next to `output`."""
    output.parent.mkdir(parents=True, exist_ok=True)
    hourly_path = output.with_name(f"{output.stem}-hourly.csv")
    windows_path = output.with_name(f"{output.stem}-windows.csv")

    with open(hourly_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=HOURLY_COLUMNS)
        writer.writeheader()
        writer.writerows(asdict(r) for r in hourly)

    with open(windows_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=WINDOW_COLUMNS)
        writer.writeheader()
        writer.writerows(asdict(w) for w in windows)

    logger.info(f"Exported {len(hourly)} hourly records and {len(windows)} windows as CSV")
    return [hourly_path, windows_path]
