"""Tests for weekly usage patterns, baselines and impact."""

from datetime import date, datetime

from conftest import FakeBaseline

from windowpilot.planning.patterns import (
    BASELINE_WINDOWS_PER_DAY_KEY,
    BaselineStats,
    DailyUsage,
    aggregate_by_day,
    analyze_weekly_patterns,
    calculate_baseline,
    compute_impact,
    ensure_baseline,
    format_pattern_summary,
    load_baseline,
    recommend_day,
)
from windowpilot.planning.profile import HourlyUsageRecord, UsageWindowRecord
from windowpilot.planning.windows import DayOfWeek

NOW = datetime(2026, 1, 20, 12, 0)


def hourly(*slots, pct=30):
    return [HourlyUsageRecord(date_hour=slot, usage_pct=pct) for slot in slots]


def window(id, start, usage_pct):
    return UsageWindowRecord(id=id, window_start=start, window_end=start, usage_pct=usage_pct)


def sample_history():
    # Mondays 5th and 12th busy 09-11, Monday 19th only at 10; Tuesday 6th at 14
    return hourly(
        "2026-01-05-09", "2026-01-05-10", "2026-01-05-11",
        "2026-01-12-09", "2026-01-12-10", "2026-01-12-11",
        "2026-01-19-10",
        "2026-01-06-14",
    )


class TestAggregation:
    def test_groups_by_calendar_day(self):
        daily = aggregate_by_day(hourly("2026-01-06-14", "2026-01-05-09", "2026-01-05-10", "garbage"))

        assert list(daily) == [date(2026, 1, 5), date(2026, 1, 6)]
        assert daily[date(2026, 1, 5)].hours == {9: 30, 10: 30}
        assert daily[date(2026, 1, 5)].active_hours == 2

    def test_peak_hour(self):
        usage = DailyUsage(day=date(2026, 1, 5), hours={9: 20, 10: 50, 11: 50})
        assert usage.peak_hour == 10
        assert DailyUsage(day=date(2026, 1, 5)).peak_hour is None


class TestRecommendDay:
    def test_starts_before_earliest_activity_near_peak(self):
        patterns = analyze_weekly_patterns(sample_history())
        monday = patterns.recommendations[DayOfWeek.MONDAY]

        assert monday.start_time == "08:45"
        assert monday.confidence == 0.6
        assert monday.data_points == 7
        assert monday.expected_usage == 70

    def test_isolated_peak(self):
        tuesday = analyze_weekly_patterns(sample_history()).recommendations[DayOfWeek.TUESDAY]

        assert tuesday.start_time == "13:45"
        assert tuesday.confidence == 0.2

    def test_wraps_past_midnight(self):
        usage = [DailyUsage(day=date(2026, 1, 5), hours={0: 10})]
        assert recommend_day(DayOfWeek.MONDAY, usage).start_time == "23:45"

        usage = [
            DailyUsage(day=date(2026, 1, 5), hours={0: 10, 23: 5}),
            DailyUsage(day=date(2026, 1, 12), hours={0: 10}),
        ]
        assert recommend_day(DayOfWeek.MONDAY, usage).start_time == "22:45"

    def test_no_data(self):
        recommendation = recommend_day(DayOfWeek.FRIDAY, [])
        assert recommendation.start_time is None
        assert recommendation.confidence == 0


class TestWeeklyPattern:
    def test_summary_fields(self):
        patterns = analyze_weekly_patterns(sample_history())

        assert patterns.most_active_day is DayOfWeek.MONDAY
        assert patterns.least_active_day is DayOfWeek.TUESDAY
        assert patterns.peak_hour == 10
        assert patterns.start_times() == {
            DayOfWeek.MONDAY: "08:45",
            DayOfWeek.TUESDAY: "13:45",
        }

    def test_empty_history(self):
        patterns = analyze_weekly_patterns([])

        assert patterns.start_times() == {}
        assert patterns.most_active_day is None
        assert patterns.peak_hour is None
        assert patterns.average_daily_hours == 0

    def test_format(self):
        text = format_pattern_summary(analyze_weekly_patterns(sample_history()))

        assert "Monday       08:45  (60% confidence, ~70% avg usage)" in text
        assert "Wednesday    No data" in text
        assert "Peak activity hour:     10:00" in text


class TestBaseline:
    def test_none_without_windows(self):
        assert calculate_baseline(10, [], 14, NOW) is None

    async def test_saved_once(self):
        store = FakeBaseline()
        windows = [
            window(1, "2026-01-10T09:00:00", 40),
            window(2, "2026-01-11T09:00:00", 60),
        ]

        saved = await ensure_baseline(store, 20, windows, 2, NOW)

        assert saved is not None
        assert (saved.windows_per_day, saved.avg_window_usage) == (1.0, 50)
        assert await ensure_baseline(store, 40, windows * 3, 2, NOW) is None
        assert store.values[BASELINE_WINDOWS_PER_DAY_KEY] == 1.0

        loaded = await load_baseline(store)
        assert loaded.saved_at == NOW
        assert loaded.record_count == 20

    async def test_missing_baseline(self):
        assert await load_baseline(FakeBaseline()) is None


class TestImpact:
    def baseline(self):
        return BaselineStats(
            saved_at=datetime(2026, 1, 10),
            days=14,
            record_count=100,
            windows_per_day=2.0,
            avg_window_usage=50,
        )

    def test_compares_windows_after_baseline(self):
        windows = [
            window(1, "2026-01-09T09:00:00", 10),
            window(2, "2026-01-11T09:00:00", 70),
            window(3, "2026-01-12T09:00:00", 90),
        ]

        impact = compute_impact(self.baseline(), windows, datetime(2026, 1, 13, 12))

        assert impact.days == 4
        assert impact.window_count == 2
        assert impact.windows_per_day_after == 0.5
        assert impact.windows_avoided == 6
        assert impact.hours_saved == 30
        assert impact.usage_change == 30

    def test_none_without_new_windows(self):
        windows = [window(1, "2026-01-09T09:00:00", 10)]
        assert compute_impact(self.baseline(), windows, datetime(2026, 1, 13)) is None
