"""Storage layer for usage history and scheduler state."""

from windowpilot.storage.database import Database, get_database, init_database

__all__ = ["Database", "get_database", "init_database"]
