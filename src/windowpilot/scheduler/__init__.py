"""Scheduler tick and its adapters."""

from windowpilot.scheduler.tick import SchedulerTick, TickResult, WarningState

__all__ = ["SchedulerTick", "TickResult", "WarningState"]
