"""Desktop notifications via osascript (macOS) or notify-send (Linux)."""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys

logger = logging.getLogger(__name__)

APP_NAME = "windowpilot"


def build_notification_command(title: str, message: str, urgency: str = "normal") -> list[str] | None:
    """Platform command for a notification, or None if unsupported."""
    if sys.platform == "darwin":
        escaped_title = title.replace('"', '\\"')
        escaped_message = message.replace('"', '\\"')
        script = f'display notification "{escaped_message}" with title "{escaped_title}"'
        return ["osascript", "-e", script]

    if sys.platform.startswith("linux") and shutil.which("notify-send"):
        return ["notify-send", f"--urgency={urgency}", f"--app-name={APP_NAME}", title, message]

    return None


class DesktopNotifier:
    """Best-effort notifier; delivery failures only return False."""

    def __init__(self, timeout_seconds: float = 10):
        self.timeout_seconds = timeout_seconds

    async def send(self, title: str, message: str, urgency: str = "normal") -> bool:
        command = build_notification_command(title, message, urgency)
        if command is None:
            logger.debug("No notification backend available")
            return False

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug(f"Notification failed: {e}")
            return False

        try:
            return await asyncio.wait_for(proc.wait(), timeout=self.timeout_seconds) == 0
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.debug(f"Notification timed out after {self.timeout_seconds}s")
            return False

    async def warn_window_ending(self, minutes_left: int) -> bool:
        urgency = "critical" if minutes_left <= 5 else "normal"
        return await self.send(
            "Usage window ending",
            f"Your current usage window ends in {minutes_left} minute{'s' if minutes_left != 1 else ''}.",
            urgency=urgency,
        )

