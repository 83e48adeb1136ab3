"""Configuration management with Pydantic and YAML support."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, EnvSettingsSource, SettingsConfigDict

from windowpilot.planning.windows import DayOfWeek, is_valid_time_string, parse_time_to_minutes

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config/windowpilot"
DEFAULT_WORK_DAYS = [
    DayOfWeek.MONDAY,
    DayOfWeek.TUESDAY,
    DayOfWeek.WEDNESDAY,
    DayOfWeek.THURSDAY,
    DayOfWeek.FRIDAY,
]


def _validate_time(value: str | None) -> str | None:
    if value is None:
        return None
    if not is_valid_time_string(value):
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    # Normalize "9:05" to "09:05"
    minutes = parse_time_to_minutes(value)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _sanitize_time(value: Any, name: str) -> str | None:
    """Like `_validate_time`, but an invalid value is dropped instead of raising."""
    if value is None:
        return None
    if not is_valid_time_string(value):
        logger.warning(f"Ignoring invalid time for {name}: {value!r}")
        return None
    return _validate_time(value)


def _parse_day(value: Any) -> DayOfWeek | None:
    try:
        return DayOfWeek(value)
    except (TypeError, ValueError):
        return None


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _drop_path(data: dict[str, Any], loc: tuple[Any, ...]) -> bool:
    """Remove the deepest mapping entry along a validation error location."""
    parent, key = None, None
    node: Any = data
    for part in loc:
        if not isinstance(node, dict) or part not in node:
            break
        parent, key = node, part
        node = node[part]

    if parent is None:
        return False
    del parent[key]
    return True


def _write_yaml(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    os.chmod(path, 0o600)


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    try:
        with open(path) as f:
            loaded = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Could not read {path}: {e}")
        return {}

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        logger.error(f"Ignoring {path}: expected a mapping, got {type(loaded).__name__}")
        return {}
    return loaded


class SchedulerConfig(BaseModel):
    """Per-minute scheduler tick configuration."""

    notifications_enabled: bool = True
    tick_interval_seconds: int = Field(default=60, ge=5, le=3600)
    autostart_cooldown_minutes: int = Field(default=60, ge=0)
    warning_thresholds: list[int] = Field(
        default_factory=lambda: [30, 15, 5],
        description="Minutes before window end at which to warn",
    )
    warning_dedup_minutes: int = Field(default=2, ge=0)

    @field_validator("warning_thresholds")
    @classmethod
    def _sort_thresholds(cls, value: list[int]) -> list[int]:
        return sorted({v for v in value if v > 0}, reverse=True)


class AdaptiveConfig(BaseModel):
    """Adaptive re-optimization of start times."""

    auto_adjust_enabled: bool = True
    interval_days: int = Field(default=7, ge=1, description="Re-optimize every N days")
    lookback_days: int = Field(default=14, ge=1, description="History used to build the profile")
    min_samples: int = Field(default=10, ge=1, description="Hourly samples required to adjust")
    alpha: float = Field(default=0.3, gt=0.0, le=1.0, description="EMA weight of the new time")
    trend_threshold_minutes: int = Field(default=15, ge=0)
    check_interval_minutes: int = Field(default=60, ge=1)


class WorkingHoursDay(BaseModel):
    """Working hours for a single weekday."""

    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _check_time(cls, value: str) -> str:
        return _validate_time(value)

    @property
    def start_minutes(self) -> int:
        return parse_time_to_minutes(self.start) or 0

    @property
    def end_minutes(self) -> int:
        return parse_time_to_minutes(self.end) or 0

    @property
    def is_valid(self) -> bool:
        return self.end_minutes > self.start_minutes


class WorkingHoursConfig(BaseModel):
    """Manually configured working hours."""

    enabled: bool = False
    work_days: list[DayOfWeek] = Field(default_factory=lambda: list(DEFAULT_WORK_DAYS))
    hours: dict[DayOfWeek, WorkingHoursDay] = Field(default_factory=dict)
    auto_adjust_from_usage: bool = Field(
        default=True, description="Blend usage-derived times into the schedule"
    )

    @field_validator("work_days", mode="before")
    @classmethod
    def _drop_unknown_days(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        days = []
        for item in value:
            day = _parse_day(item)
            if day is None:
                logger.warning(f"Ignoring unknown work day: {item!r}")
            else:
                days.append(day)
        return days or list(DEFAULT_WORK_DAYS)

    @field_validator("hours", mode="before")
    @classmethod
    def _drop_invalid_hours(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        hours = {}
        for key, entry in value.items():
            day = _parse_day(key)
            if isinstance(entry, WorkingHoursDay):
                valid = day is not None
            else:
                valid = (
                    day is not None
                    and isinstance(entry, dict)
                    and is_valid_time_string(entry.get("start"))
                    and is_valid_time_string(entry.get("end"))
                )
            if valid:
                hours[day] = entry
            else:
                logger.warning(f"Ignoring invalid working hours for {key!r}: {entry!r}")
        return hours

    def hours_for(self, day: DayOfWeek) -> WorkingHoursDay | None:
        return self.hours.get(day)


class OptimalStartTimes(BaseModel):
    """One optional HH:MM start time per weekday."""

    monday: str | None = None
    tuesday: str | None = None
    wednesday: str | None = None
    thursday: str | None = None
    friday: str | None = None
    saturday: str | None = None
    sunday: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _check_time(cls, value: Any, info: ValidationInfo) -> str | None:
        return _sanitize_time(value, info.field_name)

    def get(self, day: DayOfWeek) -> str | None:
        return getattr(self, day.value)

    def with_updates(self, updates: dict[DayOfWeek, str | None]) -> OptimalStartTimes:
        data = self.model_dump()
        data.update({day.value: time for day, time in updates.items()})
        return OptimalStartTimes(**data)


class AutostartConfig(BaseModel):
    """Command used to open a new usage window."""

    command: list[str] = Field(default_factory=lambda: ["claude", "-p"])
    timeout_seconds: int = Field(default=25, ge=1, le=600)


class UsageConfig(BaseModel):
    """Where live usage / window state is read from."""

    cache_path: Path | None = Field(
        default=None, description="Usage cache JSON (defaults to <data_dir>/usage-cache.json)"
    )
    cache_ttl_seconds: int = Field(default=300, ge=0)
    refresh_command: list[str] = Field(
        default_factory=list, description="Command printing fresh usage JSON"
    )
    refresh_timeout_seconds: int = Field(default=30, ge=1)


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="WINDOWPILOT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".local/share/windowpilot")
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".local/state/windowpilot")
    config_dir: Path = Field(default_factory=lambda: DEFAULT_CONFIG_DIR)

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    # Sub-configurations
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    adaptive: AdaptiveConfig = Field(default_factory=AdaptiveConfig)
    working_hours: WorkingHoursConfig = Field(default_factory=WorkingHoursConfig)
    optimal_start_times: OptimalStartTimes = Field(default_factory=OptimalStartTimes)
    autostart: AutostartConfig = Field(default_factory=AutostartConfig)
    usage: UsageConfig = Field(default_factory=UsageConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # load() layers the environment over the YAML file itself
        return (init_settings,)

    @model_validator(mode="after")
    def _default_cache_path(self) -> Config:
        if self.usage.cache_path is None:
            self.usage.cache_path = self.data_dir / "usage-cache.json"
        return self

    @property
    def db_path(self) -> Path:
        """Path to SQLite database."""
        return self.data_dir / "windowpilot.db"

    @property
    def config_file(self) -> Path:
        """Path to YAML config file."""
        return self.config_dir / "config.yaml"

    def ensure_directories(self) -> None:
        """Create all required directories."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)

        os.chmod(self.data_dir, 0o700)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from environment variables, YAML file, and defaults.

        Priority (highest to lowest):
        1. Environment variables (WINDOWPILOT_*, nested with "__")
        2. YAML config file
        3. Default values

        Never raises on bad values: invalid entries are logged and replaced
        by their defaults so one typo cannot stop the scheduler.
        """
        config_path = config_path or DEFAULT_CONFIG_DIR / "config.yaml"

        try:
            env_config = EnvSettingsSource(cls)()
        except ValueError as e:
            logger.error(f"Ignoring environment overrides: {e}")
            env_config = {}

        data = _deep_merge(_read_yaml(config_path), env_config)
        data.setdefault("config_dir", str(config_path.parent))

        try:
            return cls(**data)
        except ValidationError as e:
            for error in e.errors():
                location = ".".join(str(part) for part in error["loc"]) or "<root>"
                logger.warning(f"Ignoring invalid config value at {location}: {error['msg']}")
                _drop_path(data, error["loc"])

        try:
            return cls(**data)
        except ValidationError as e:
            logger.error(f"Invalid configuration in {config_path}, using defaults: {e}")
            return cls(config_dir=config_path.parent)

    def save(self, config_path: Path | None = None) -> None:
        """Save current configuration to YAML file."""
        config_path = config_path or self.config_file
        _write_yaml(config_path, self.model_dump(mode="json", exclude_none=True))


class ConfigStore:
    """Re-readable configuration file.

    The scheduler reads through this on every tick so edits (manual or by
    the adaptive learner) take effect without restarting the daemon.
    """

    def __init__(self, config_path: Path | None = None):
        self.config_path = config_path or DEFAULT_CONFIG_DIR / "config.yaml"

    def load(self) -> Config:
        return Config.load(self.config_path)

    def save(self, config: Config) -> None:
        config.save(self.config_path)

    def update_optimal_start_times(self, updates: dict[DayOfWeek, str | None]) -> Config:
        """Persist new start times for the given days, keeping the rest.

        Only the `optimal_start_times` section of the file is rewritten, so
        environment overrides are never baked into it.
        """
        raw = _read_yaml(self.config_path)
        times = raw.get("optimal_start_times")
        if not isinstance(times, dict):
            times = {}
        times.update({day.value: time for day, time in updates.items()})
        raw["optimal_start_times"] = times
        _write_yaml(self.config_path, raw)

        logger.info(
            "Optimal start times updated: "
            + ", ".join(f"{day.value}={time or '-'}" for day, time in updates.items())
        )
        return self.load()

    def set_optimal_start_time(self, day: DayOfWeek, time: str | None) -> Config:
        """Manually override one day's start time (None clears it)."""
        return self.update_optimal_start_times({day: time})


@lru_cache
def get_config() -> Config:
    """Get cached configuration instance."""
    return Config.load()
