"""Tests for the adaptive learner."""

from datetime import datetime, timedelta

import pytest
from conftest import (
    FakeBaseline,
    FakeHistory,
    FakeLauncher,
    FakeNotifier,
    FakeProbe,
    FakeStateStore,
)

from windowpilot.core.config import WorkingHoursConfig, WorkingHoursDay
from windowpilot.planning.adaptive import (
    ADJUSTMENT_COUNT_KEY,
    LAST_ADJUSTMENT_KEY,
    AdaptiveLearner,
    Trend,
    blend_times,
    classify_trend,
    format_adjustment_result,
)
from windowpilot.planning.profile import HourlyUsageRecord
from windowpilot.planning.windows import DayOfWeek
from windowpilot.scheduler.tick import SchedulerTick

NOW = datetime(2026, 1, 20, 12, 0)


def two_days_of_steady_usage() -> list[HourlyUsageRecord]:
    """5% per hour from 09:00 to 16:00 on two days, outside any window."""
    records = []
    cumulative = 0
    for day in (5, 6):
        for hour in range(9, 17):
            cumulative += 5
            records.append(HourlyUsageRecord(date_hour=f"2026-01-{day:02d}-{hour:02d}", usage_pct=cumulative))
    return records


def configure(store, **changes):
    config = store.load()
    config.working_hours = WorkingHoursConfig(
        work_days=[DayOfWeek.MONDAY],
        hours={DayOfWeek.MONDAY: WorkingHoursDay(start="09:00", end="17:00")},
    )
    config.optimal_start_times = config.optimal_start_times.with_updates({DayOfWeek.MONDAY: "10:00"})
    for key, value in changes.items():
        section, _, field = key.partition("__")
        setattr(getattr(config, section), field, value)
    store.save(config)


def make_learner(store, records=None, baseline=None):
    return AdaptiveLearner(
        history=FakeHistory(records if records is not None else two_days_of_steady_usage()),
        baseline=baseline or FakeBaseline(),
        config_store=store,
        clock=lambda: NOW,
    )


class TestBlendTimes:
    def test_ema(self):
        assert blend_times("10:00", "08:00", 0.3) == "09:24"

    def test_identity_laws(self):
        assert blend_times(None, "08:15") == "08:15"
        assert blend_times("08:15", None) == "08:15"
        assert blend_times(None, None) is None

    def test_equal_times_unchanged(self):
        assert blend_times("07:45", "07:45", 0.3) == "07:45"

    def test_shortest_arc_across_midnight(self):
        assert blend_times("23:00", "01:00", 0.5) == "00:00"
        assert blend_times("01:00", "23:00", 0.5) == "00:00"
        assert blend_times("23:00", "01:00") == "23:36"

    def test_alpha_one_takes_new(self):
        assert blend_times("10:00", "08:00", 1.0) == "08:00"


class TestTrend:
    def test_classification(self):
        assert classify_trend(-30) == Trend.EARLIER
        assert classify_trend(30) == Trend.LATER
        assert classify_trend(10) == Trend.STABLE
        assert classify_trend(None) == Trend.STABLE


class TestGuards:
    async def test_disabled(self, config_store):
        configure(config_store, adaptive__auto_adjust_enabled=False)

        result = await make_learner(config_store).run_adaptive_adjustment()

        assert not result.adjusted
        assert result.reason == "Auto-adjustment is disabled"

    async def test_manual_hours_without_blending(self, config_store):
        configure(
            config_store,
            working_hours__enabled=True,
            working_hours__auto_adjust_from_usage=False,
        )

        result = await make_learner(config_store).run_adaptive_adjustment()

        assert not result.adjusted
        assert "Manual working hours" in result.reason

    async def test_insufficient_data(self, config_store):
        configure(config_store)

        result = await make_learner(config_store, records=two_days_of_steady_usage()[:5]).run_adaptive_adjustment()

        assert not result.adjusted
        assert result.reason.startswith("Insufficient usage data")
        assert result.diagnostics.sample_count == 5
        assert config_store.load().optimal_start_times.monday == "10:00"

    async def test_no_configured_hours(self, config_store):
        configure(config_store)
        config = config_store.load()
        config.working_hours.hours = {}
        config_store.save(config)

        result = await make_learner(config_store).run_adaptive_adjustment()

        assert not result.adjusted
        assert result.diagnostics.profile_built


class TestAdjustment:
    async def test_blends_towards_recommendation(self, config_store):
        configure(config_store)
        baseline = FakeBaseline()

        result = await make_learner(config_store, baseline=baseline).run_adaptive_adjustment()

        assert result.adjusted
        [change] = result.changes
        assert change.day == DayOfWeek.MONDAY
        assert change.old_time == "10:00"
        assert change.new_time == "05:00"
        assert change.blended_time == "08:30"
        assert result.diagnostics.trend == Trend.EARLIER
        assert result.diagnostics.avg_shift_minutes == -300

        assert config_store.load().optimal_start_times.monday == "08:30"
        assert baseline.values[LAST_ADJUSTMENT_KEY] == NOW.timestamp()
        assert baseline.values[ADJUSTMENT_COUNT_KEY] == 1

    async def test_dry_run_does_not_persist(self, config_store):
        configure(config_store)
        baseline = FakeBaseline()

        result = await make_learner(config_store, baseline=baseline).run_adaptive_adjustment(dry_run=True)

        assert not result.adjusted
        assert len(result.changes) == 1
        assert config_store.load().optimal_start_times.monday == "10:00"
        assert baseline.values == {}

    async def test_no_change_when_already_optimal(self, config_store):
        configure(config_store)
        config_store.set_optimal_start_time(DayOfWeek.MONDAY, "05:00")

        result = await make_learner(config_store).run_adaptive_adjustment()

        assert not result.adjusted
        assert result.changes == []
        assert "No significant change" in result.reason

    async def test_count_increments(self, config_store):
        configure(config_store)
        baseline = FakeBaseline({ADJUSTMENT_COUNT_KEY: 4})

        await make_learner(config_store, baseline=baseline).run_adaptive_adjustment()

        assert baseline.values[ADJUSTMENT_COUNT_KEY] == 5

    async def test_format_report(self, config_store):
        configure(config_store)

        result = await make_learner(config_store).run_adaptive_adjustment(dry_run=True)
        report = format_adjustment_result(result)

        assert "Monday" in report
        assert "10:00 -> 08:30" in report


class TestSchedule:
    async def test_first_run_is_due(self, config_store):
        configure(config_store)
        assert await make_learner(config_store).should_run_adjustment()

    @pytest.mark.parametrize("days_ago,due", [(1, False), (6.9, False), (7, True), (10, True)])
    async def test_interval(self, config_store, days_ago, due):
        configure(config_store)
        last = (NOW - timedelta(days=days_ago)).timestamp()
        learner = make_learner(config_store, baseline=FakeBaseline({LAST_ADJUSTMENT_KEY: last}))

        assert await learner.should_run_adjustment() is due

    async def test_not_due_when_disabled(self, config_store):
        configure(config_store, adaptive__auto_adjust_enabled=False)
        assert not await make_learner(config_store).should_run_adjustment()

    async def test_last_adjustment_info(self, config_store):
        configure(config_store)
        last = (NOW - timedelta(days=3)).timestamp()
        learner = make_learner(
            config_store, baseline=FakeBaseline({LAST_ADJUSTMENT_KEY: last, ADJUSTMENT_COUNT_KEY: 2})
        )

        info = await learner.get_last_adjustment_info()

        assert info.days_since == 3
        assert info.count == 2
        assert info.timestamp == NOW - timedelta(days=3)


class TestLearnedScheduleFires:
    async def test_evening_recommendation_fires_night_before(self, config_store):
        config = config_store.load()
        config.working_hours = WorkingHoursConfig(
            work_days=[DayOfWeek.MONDAY],
            hours={DayOfWeek.MONDAY: WorkingHoursDay(start="03:15", end="05:14")},
        )
        config.adaptive.min_samples = 4
        config_store.save(config)
        # 10% in each of 03:00 and 04:00 on two days
        records = [
            HourlyUsageRecord(date_hour=f"2026-01-{day:02d}-{hour:02d}", usage_pct=pct)
            for day, hour, pct in [(5, 3, 10), (5, 4, 20), (6, 3, 30), (6, 4, 40)]
        ]

        adjustment = await make_learner(config_store, records).run_adaptive_adjustment()

        assert adjustment.adjusted
        assert adjustment.changes[0].new_time == "23:00"
        assert config_store.load().optimal_start_times.monday == "23:00"

        launcher = FakeLauncher()
        tick = SchedulerTick(config_store.load, FakeStateStore(), FakeProbe(), launcher, FakeNotifier())

        monday_night = await tick.tick(datetime(2026, 1, 12, 23, 30))
        sunday_night = await tick.tick(datetime(2026, 1, 11, 23, 30))
        await tick.wait_pending()

        assert not monday_night.auto_started
        assert sunday_night.auto_started
        assert sunday_night.trigger == "23:00"
        assert launcher.calls == 1
