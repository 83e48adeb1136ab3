"""Starts a new usage window by sending a short message."""

from __future__ import annotations

import asyncio
import logging
import random
import shutil

from windowpilot.core.ports import LaunchResult

logger = logging.getLogger(__name__)

GREETINGS = [
    "Hi.",
    "Hello.",
    "Hey.",
    "Good morning.",
    "Good afternoon.",
    "Good evening.",
    "Hi there.",
    "Hello there.",
    "Hey there.",
    "Greetings.",
    "What's up?",
    "How are you?",
]


def random_greeting() -> str:
    return random.choice(GREETINGS)


class CommandSessionLauncher:
    """Runs `command + [greeting]` and waits for it with a timeout."""

    def __init__(self, command: list[str], timeout_seconds: float = 25):
        self.command = list(command)
        self.timeout_seconds = timeout_seconds

    async def start_session(self) -> LaunchResult:
        if not self.command:
            return LaunchResult(success=False, message="No autostart command configured")

        executable = shutil.which(self.command[0])
        if executable is None:
            return LaunchResult(success=False, message=f"Command not found: {self.command[0]}")

        greeting = random_greeting()
        try:
            proc = await asyncio.create_subprocess_exec(
                executable,
                *self.command[1:],
                greeting,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return LaunchResult(success=False, message=f"Failed to start session: {e}", greeting=greeting)

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return LaunchResult(
                success=False,
                message=f"Session timed out after {self.timeout_seconds}s",
                greeting=greeting,
            )

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            return LaunchResult(
                success=False,
                message=f"Session exited with code {proc.returncode}: {detail}",
                greeting=greeting,
            )

        logger.debug(f"Session started with greeting {greeting!r}")
        return LaunchResult(success=True, message="Session started", greeting=greeting)
