"""Tests for configuration loading and persistence."""

import pytest
import yaml
from pydantic import ValidationError

from windowpilot.core.config import (
    Config,
    ConfigStore,
    OptimalStartTimes,
    SchedulerConfig,
    WorkingHoursDay,
)
from windowpilot.planning.windows import DayOfWeek


class TestDefaults:
    def test_defaults(self, tmp_path):
        config = Config(data_dir=tmp_path)

        assert config.scheduler.autostart_cooldown_minutes == 60
        assert config.scheduler.warning_thresholds == [30, 15, 5]
        assert config.adaptive.alpha == 0.3
        assert config.adaptive.lookback_days == 14
        assert config.adaptive.min_samples == 10
        assert config.adaptive.interval_days == 7
        assert config.usage.cache_path == tmp_path / "usage-cache.json"
        assert config.db_path == tmp_path / "windowpilot.db"

    def test_thresholds_sorted_descending(self):
        assert SchedulerConfig(warning_thresholds=[5, 30, 15, 5]).warning_thresholds == [30, 15, 5]


class TestTimeValidation:
    def test_normalizes(self):
        assert OptimalStartTimes(monday="9:05").monday == "09:05"

    @pytest.mark.parametrize("value", ["25:00", "9am", "12:75", 540])
    def test_invalid_start_time_dropped(self, value):
        times = OptimalStartTimes(monday="09:00", tuesday=value)
        assert (times.monday, times.tuesday) == ("09:00", None)

    def test_working_hours_day_rejects_invalid(self):
        with pytest.raises(ValidationError):
            WorkingHoursDay(start="25:00", end="17:00")

    def test_working_hours_day(self):
        day = WorkingHoursDay(start="07:30", end="16:00")
        assert (day.start_minutes, day.end_minutes, day.is_valid) == (450, 960, True)
        assert not WorkingHoursDay(start="16:00", end="07:30").is_valid

    def test_with_updates(self):
        times = OptimalStartTimes(monday="09:00").with_updates({DayOfWeek.TUESDAY: "10:00"})
        assert (times.monday, times.tuesday) == ("09:00", "10:00")


class TestYaml:
    def test_load_from_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({
            "optimal_start_times": {"monday": "08:15"},
            "working_hours": {
                "enabled": True,
                "hours": {"monday": {"start": "08:00", "end": "17:00"}},
            },
            "scheduler": {"autostart_cooldown_minutes": 30},
        }))

        config = Config.load(path)

        assert config.optimal_start_times.get(DayOfWeek.MONDAY) == "08:15"
        assert config.working_hours.hours_for(DayOfWeek.MONDAY).start == "08:00"
        assert config.scheduler.autostart_cooldown_minutes == 30
        assert config.config_dir == tmp_path

    def test_invalid_time_in_file_only_drops_that_day(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"optimal_start_times": {"monday": "09:00", "sunday": "9:75"}}))

        config = Config.load(path)

        assert config.optimal_start_times.monday == "09:00"
        assert config.optimal_start_times.sunday is None

    def test_invalid_working_hours_entries_dropped(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({
            "working_hours": {
                "enabled": True,
                "work_days": ["monday", "funday"],
                "hours": {
                    "monday": {"start": "08:00", "end": "17:00"},
                    "tuesday": {"start": "08:00", "end": "27:00"},
                    "funday": {"start": "08:00", "end": "17:00"},
                },
            },
        }))

        working_hours = Config.load(path).working_hours

        assert working_hours.enabled
        assert working_hours.work_days == [DayOfWeek.MONDAY]
        assert list(working_hours.hours) == [DayOfWeek.MONDAY]

    def test_invalid_scalar_falls_back_to_default(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({
            "optimal_start_times": {"monday": "08:15"},
            "scheduler": {"autostart_cooldown_minutes": -5, "tick_interval_seconds": 30},
        }))

        config = Config.load(path)

        assert config.scheduler.autostart_cooldown_minutes == 60
        assert config.scheduler.tick_interval_seconds == 30
        assert config.optimal_start_times.monday == "08:15"

    def test_unreadable_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("optimal_start_times: [unclosed")

        config = Config.load(path)

        assert config.optimal_start_times.monday is None
        assert config.config_dir == tmp_path

    def test_missing_file_gives_defaults(self, tmp_path):
        config = Config.load(tmp_path / "missing.yaml")
        assert config.optimal_start_times.monday is None


class TestEnvironment:
    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        Config(config_dir=tmp_path).save(path)
        monkeypatch.setenv("WINDOWPILOT_SCHEDULER__AUTOSTART_COOLDOWN_MINUTES", "5")

        assert Config.load(path).scheduler.autostart_cooldown_minutes == 5

    def test_yaml_used_without_env(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"scheduler": {"autostart_cooldown_minutes": 45}}))
        monkeypatch.delenv("WINDOWPILOT_SCHEDULER__AUTOSTART_COOLDOWN_MINUTES", raising=False)

        assert Config.load(path).scheduler.autostart_cooldown_minutes == 45

    def test_start_time_update_does_not_persist_env(self, config_store, monkeypatch):
        monkeypatch.setenv("WINDOWPILOT_SCHEDULER__AUTOSTART_COOLDOWN_MINUTES", "5")

        config_store.set_optimal_start_time(DayOfWeek.MONDAY, "09:00")
        saved = yaml.safe_load(config_store.config_path.read_text())

        assert saved["scheduler"]["autostart_cooldown_minutes"] == 60
        assert saved["optimal_start_times"]["monday"] == "09:00"


class TestConfigStore:
    def test_update_persists_and_keeps_other_days(self, config_store):
        config_store.set_optimal_start_time(DayOfWeek.MONDAY, "09:00")
        config_store.update_optimal_start_times({DayOfWeek.FRIDAY: "07:45"})

        config = config_store.load()

        assert config.optimal_start_times.monday == "09:00"
        assert config.optimal_start_times.friday == "07:45"

    def test_clear_day(self, config_store):
        config_store.set_optimal_start_time(DayOfWeek.MONDAY, "09:00")
        config_store.set_optimal_start_time(DayOfWeek.MONDAY, None)

        assert config_store.load().optimal_start_times.monday is None

    def test_file_permissions(self, config_store):
        assert config_store.config_path.stat().st_mode & 0o777 == 0o600

    def test_reread_on_each_load(self, config_store):
        first = config_store.load()
        ConfigStore(config_store.config_path).set_optimal_start_time(DayOfWeek.SUNDAY, "20:00")

        assert first.optimal_start_times.sunday is None
        assert config_store.load().optimal_start_times.sunday == "20:00"
