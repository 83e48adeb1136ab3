"""Tests for trigger optimization."""

import pytest

from windowpilot.planning.profile import default_profile
from windowpilot.planning.trigger_optimizer import (
    calculate_optimal_start_times,
    candidate_triggers,
    expected_window_usage,
    find_optimal_trigger,
    is_valid_trigger,
    min_slack,
)
from windowpilot.planning.windows import QUOTA, Window, windows_for_trigger

WORK_START = 450  # 07:30
WORK_END = 960  # 16:00


def flat(value: float) -> dict[int, float]:
    return {hour: value for hour in range(24)}


class TestExpectedWindowUsage:
    def test_full_hours(self):
        window = Window(start=540, end=840, work_overlap_start=540, work_overlap_end=840)
        assert expected_window_usage(flat(10), window) == pytest.approx(50)

    def test_partial_hours_weighted(self):
        window = Window(start=300, end=600, work_overlap_start=450, work_overlap_end=600)
        profile = {7: 20.0, 8: 10.0, 9: 40.0}
        # Half of 07:00, all of 08:00 and 09:00
        assert expected_window_usage(profile, window) == pytest.approx(10 + 10 + 40)

    def test_missing_hours_count_as_zero(self):
        window = Window(start=540, end=840, work_overlap_start=540, work_overlap_end=840)
        assert expected_window_usage({}, window) == 0


class TestCandidates:
    def test_order_forward_then_evening(self):
        candidates = candidate_triggers(WORK_START)

        assert candidates[0] == 0
        assert candidates[candidates.index(450) + 1] == 1140
        assert candidates[-1] == 1425
        assert all(c % 15 == 0 for c in candidates)


class TestFindOptimalTrigger:
    def test_uniform_profile(self):
        result = find_optimal_trigger(flat(10), WORK_START, WORK_END)

        assert result.is_valid
        assert result.trigger_time < WORK_START
        assert result.trigger_time == 0
        assert result.bucket_count == 3
        assert result.min_slack == pytest.approx(50)
        assert result.window_start_times == ["05:00", "10:00", "15:00"]

    def test_no_valid_candidate_falls_back_to_work_start(self):
        result = find_optimal_trigger(flat(150), WORK_START, WORK_END)

        assert not result.is_valid
        assert result.trigger_time == WORK_START
        assert result.bucket_count == 2
        assert result.min_slack < 0

    def test_result_windows_never_exceed_quota(self):
        profile = {h: (30.0 if 9 <= h < 12 else 5.0) for h in range(24)}
        result = find_optimal_trigger(profile, 480, 1080)

        assert result.is_valid
        for window in result.windows:
            assert expected_window_usage(profile, window) <= QUOTA

    @pytest.mark.parametrize(
        "profile",
        [
            flat(10),
            {h: (30.0 if 9 <= h < 12 else 5.0) for h in range(24)},
            {h: (40.0 if h in (8, 13) else 2.0) for h in range(24)},
        ],
    )
    def test_maximal_buckets_then_slack(self, profile):
        result = find_optimal_trigger(profile, WORK_START, WORK_END)

        for trigger in candidate_triggers(WORK_START):
            if not is_valid_trigger(profile, trigger, WORK_START, WORK_END):
                continue
            buckets = len(windows_for_trigger(trigger, WORK_START, WORK_END))
            assert buckets <= result.bucket_count
            if buckets == result.bucket_count:
                assert min_slack(profile, trigger, WORK_START, WORK_END) <= result.min_slack + 1e-9

    def test_empty_profile_is_valid(self):
        result = find_optimal_trigger({}, WORK_START, WORK_END)
        assert result.is_valid
        assert result.min_slack == QUOTA

    @pytest.mark.parametrize("start,end", [(600, 600), (700, 600), (-10, 600), (600, 1440)])
    def test_invalid_bounds_raise(self, start, end):
        with pytest.raises(ValueError):
            find_optimal_trigger(flat(10), start, end)

    def test_to_dict(self):
        data = find_optimal_trigger(flat(10), WORK_START, WORK_END).to_dict()
        assert data["trigger_time_formatted"] == "00:00"
        assert len(data["windows"]) == 3


class TestCalculateOptimalStartTimes:
    def test_default_profile(self):
        assert calculate_optimal_start_times("07:30", "16:00") == [300, 600, 900]

    def test_explicit_profile(self):
        assert calculate_optimal_start_times("07:30", "16:00", default_profile()) == [300, 600, 900]

    @pytest.mark.parametrize("start,end", [("16:00", "07:30"), ("bad", "16:00"), ("09:00", "09:00")])
    def test_invalid_hours(self, start, end):
        assert calculate_optimal_start_times(start, end) == []
