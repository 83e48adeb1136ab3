"""Active-window detection from the usage cache.

The cache is a small JSON file::

    {"timestamp": 1767000000.0,
     "data": {"session": {"percentage": 42, "resets_at_iso": "2026-01-03T17:00:00Z"}}}

A session whose reset time lies in the future means a window is active.
Reading the cache is cheap; a fresh reading runs the configured refresh
command, which must print the same ``data`` object as JSON.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from windowpilot.planning.windows import parse_timestamp

logger = logging.getLogger(__name__)


@dataclass
class UsageSnapshot:
    """Session usage as last observed."""

    percentage: float | None
    resets_at: datetime | None
    fetched_at: float  # Epoch seconds
    cached: bool = False

    def is_active(self, now: datetime) -> bool:
        return self.resets_at is not None and self.resets_at > now

    @classmethod
    def from_payload(cls, data: dict[str, Any], fetched_at: float, cached: bool = False) -> UsageSnapshot:
        session = data.get("session") or {}
        percentage = session.get("percentage")
        return cls(
            percentage=float(percentage) if percentage is not None else None,
            resets_at=parse_timestamp(session.get("resets_at_iso") or session.get("resets_at")),
            fetched_at=fetched_at,
            cached=cached,
        )


class UsageCacheProbe:
    """Cheap cached check with an expensive command-backed fallback."""

    def __init__(
        self,
        cache_path: Path,
        ttl_seconds: int = 300,
        refresh_command: list[str] | None = None,
        refresh_timeout: float = 30,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.cache_path = cache_path
        self.ttl_seconds = ttl_seconds
        self.refresh_command = list(refresh_command or [])
        self.refresh_timeout = refresh_timeout
        self.clock = clock

    def _load_cache(self) -> tuple[float, dict[str, Any]] | None:
        try:
            with open(self.cache_path) as f:
                payload = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug(f"Unreadable usage cache {self.cache_path}: {e}")
            return None

        if not isinstance(payload, dict) or "timestamp" not in payload:
            return None
        data = payload.get("data", payload)
        if not isinstance(data, dict):
            return None
        try:
            return float(payload["timestamp"]), data
        except (TypeError, ValueError):
            return None

    def save_cache(self, data: dict[str, Any]) -> None:
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.cache_path, "w") as f:
            json.dump({"timestamp": time.time(), "data": data}, f)

    def cached_usage(self, max_age: float | None = None) -> UsageSnapshot | None:
        """Cached snapshot no older than `max_age` seconds (default: TTL)."""
        loaded = self._load_cache()
        if loaded is None:
            return None

        timestamp, data = loaded
        max_age = self.ttl_seconds if max_age is None else max_age
        if time.time() - timestamp >= max_age:
            return None
        return UsageSnapshot.from_payload(data, fetched_at=timestamp, cached=True)

    def peek_cached_active(self) -> bool | None:
        snapshot = self.cached_usage()
        if snapshot is None:
            return None
        return snapshot.is_active(self.clock())

    async def fetch_usage(self) -> UsageSnapshot:
        """Run the refresh command and cache its output.

        Raises RuntimeError when the command fails, times out or prints
        something that is not a JSON object.
        """
        if not self.refresh_command:
            raise RuntimeError("No usage refresh command configured")

        try:
            proc = await asyncio.create_subprocess_exec(
                *self.refresh_command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RuntimeError(f"Could not run usage refresh command: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.refresh_timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise RuntimeError(f"Usage refresh timed out after {self.refresh_timeout}s")

        if proc.returncode != 0:
            raise RuntimeError(
                f"Usage refresh exited with {proc.returncode}: {stderr.decode(errors='replace').strip()}"
            )

        try:
            data = json.loads(stdout.decode())
        except ValueError as e:
            raise RuntimeError(f"Usage refresh printed invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise RuntimeError("Usage refresh output is not a JSON object")

        try:
            self.save_cache(data)
        except OSError as e:
            logger.warning(f"Failed to write usage cache: {e}")

        return UsageSnapshot.from_payload(data, fetched_at=time.time())

    async def fetch_fresh_active(self) -> bool:
        if not self.refresh_command:
            # Nothing to refresh from, fall back to whatever the cache holds
            loaded = self._load_cache()
            if loaded is None:
                return False
            _, data = loaded
            return UsageSnapshot.from_payload(data, fetched_at=0).is_active(self.clock())

        snapshot = await self.fetch_usage()
        return snapshot.is_active(self.clock())
