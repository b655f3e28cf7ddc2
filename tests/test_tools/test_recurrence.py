"""
Tests for the Recurrence Calculator
Tests dose timestamp generation, continuation and back-fill
"""

import pytest
from datetime import datetime, date, time, timedelta, timezone
from zoneinfo import ZoneInfo

from tools.recurrence import (
    BackfillPlan,
    InvalidBackfillError,
    InvalidScheduleError,
    as_naive_utc,
    as_utc,
    backfill,
    from_client,
    continue_occurrences,
    local_today,
    next_occurrences,
    normalize_start_time,
    parse_start_time,
    treatment_end,
    validate_duration,
    validate_frequency,
)
from tests.conftest import FIXED_NOW


SAO_PAULO = ZoneInfo("America/Sao_Paulo")


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# =============================================================================
# Test Validation
# =============================================================================

class TestStartTime:
    """Tests for start time parsing"""

    @pytest.mark.parametrize("value,expected", [
        ("08:00", time(8, 0)),
        ("8:05", time(8, 5)),
        ("00:00", time(0, 0)),
        ("23:59", time(23, 59)),
        (" 12:30 ", time(12, 30)),
    ])
    def test_accepts_valid_times(self, value, expected):
        assert parse_start_time(value) == expected

    @pytest.mark.parametrize("value", ["24:00", "12:60", "8", "08:0", "ab:cd", "", "08:00:00"])
    def test_rejects_invalid_times(self, value):
        with pytest.raises(InvalidScheduleError):
            parse_start_time(value)

    def test_rejects_non_string(self):
        with pytest.raises(InvalidScheduleError):
            parse_start_time(800)

    def test_normalizes_to_zero_padded(self):
        assert normalize_start_time("7:30") == "07:30"


class TestFrequency:
    """Tests for frequency validation"""

    @pytest.mark.parametrize("value", [0.5, 1, 6, 8.0, 24, 8760])
    def test_accepts_bounds_and_typical_values(self, value):
        assert validate_frequency(value) == float(value)

    @pytest.mark.parametrize("value", [0, 0.25, -8, 8761, float("inf"), float("nan")])
    def test_rejects_out_of_range(self, value):
        with pytest.raises(InvalidScheduleError):
            validate_frequency(value)

    @pytest.mark.parametrize("value", [None, "eight", True])
    def test_rejects_non_numeric(self, value):
        with pytest.raises(InvalidScheduleError):
            validate_frequency(value)

    def test_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            validate_frequency(0)


class TestDuration:
    """Tests for treatment duration validation"""

    def test_none_means_continuous(self):
        assert validate_duration(None) is None

    @pytest.mark.parametrize("value", [1, 10, 365])
    def test_accepts_range(self, value):
        assert validate_duration(value) == value

    @pytest.mark.parametrize("value", [0, -1, 366, 2.5, True])
    def test_rejects_invalid(self, value):
        with pytest.raises(InvalidScheduleError):
            validate_duration(value)


# =============================================================================
# Test Time Helpers
# =============================================================================

class TestTimeHelpers:
    """Tests for UTC conversion helpers"""

    def test_naive_is_treated_as_utc(self):
        assert as_utc(datetime(2025, 3, 10, 12, 0)) == utc(2025, 3, 10, 12, 0)

    def test_aware_is_converted(self):
        local = datetime(2025, 3, 10, 9, 0, tzinfo=SAO_PAULO)
        assert as_naive_utc(local) == datetime(2025, 3, 10, 12, 0)

    def test_client_naive_is_operating_time(self):
        assert from_client(datetime(2025, 3, 10, 9, 0), SAO_PAULO) == utc(2025, 3, 10, 12, 0)

    def test_client_aware_keeps_its_offset(self):
        assert from_client(utc(2025, 3, 10, 12, 0), SAO_PAULO) == utc(2025, 3, 10, 12, 0)

    def test_local_today_uses_operating_timezone(self):
        # 01:00 UTC is still the previous evening in Sao Paulo
        assert local_today(utc(2025, 3, 11, 1, 0), SAO_PAULO) == date(2025, 3, 10)

    def test_treatment_end_is_local_midnight(self):
        end = treatment_end(date(2025, 3, 10), 10, SAO_PAULO)
        assert end == utc(2025, 3, 20, 3, 0)

    def test_treatment_end_continuous(self):
        assert treatment_end(date(2025, 3, 10), None) is None
        assert treatment_end(None, 10) is None


# =============================================================================
# Test Generation
# =============================================================================

class TestNextOccurrences:
    """Tests for generating future doses from a rule"""

    def test_six_hourly_week(self):
        """08:00 has passed locally, so the series starts tomorrow"""
        doses = list(next_occurrences("08:00", 6, now=FIXED_NOW, horizon_days=7, tz=SAO_PAULO))

        assert len(doses) == 25
        assert doses[0] == utc(2025, 3, 11, 11, 0)
        assert doses[-1] == utc(2025, 3, 17, 11, 0)

    def test_uses_today_when_start_time_is_ahead(self):
        doses = list(next_occurrences("10:00", 24, now=FIXED_NOW, horizon_days=7, tz=SAO_PAULO))

        assert doses[0] == utc(2025, 3, 10, 13, 0)
        assert len(doses) == 7

    def test_start_time_equal_to_now_rolls_over(self):
        doses = list(next_occurrences("09:00", 24, now=FIXED_NOW, horizon_days=2, tz=SAO_PAULO))
        assert doses[0] == utc(2025, 3, 11, 12, 0)

    def test_all_strictly_after_now_and_within_horizon(self):
        doses = list(next_occurrences("09:30", 0.5, now=FIXED_NOW, horizon_days=1, tz=SAO_PAULO))
        horizon_end = FIXED_NOW + timedelta(days=1)

        assert doses
        assert all(FIXED_NOW < d <= horizon_end for d in doses)

    def test_strictly_increasing(self):
        doses = list(next_occurrences("08:00", 8, now=FIXED_NOW, horizon_days=7, tz=SAO_PAULO))
        assert all(a < b for a, b in zip(doses, doses[1:]))

    def test_fractional_frequency_has_no_drift(self):
        doses = list(next_occurrences("10:00", 1.5, now=FIXED_NOW, horizon_days=7, tz=SAO_PAULO))
        first = doses[0]

        for index, dose in enumerate(doses):
            assert dose == first + index * timedelta(minutes=90)

    def test_accepts_time_object(self):
        doses = list(next_occurrences(time(10, 0), 24, now=FIXED_NOW, horizon_days=1, tz=SAO_PAULO))
        assert doses == [utc(2025, 3, 10, 13, 0)]

    def test_until_is_exclusive(self):
        until = treatment_end(date(2025, 3, 10), 2, SAO_PAULO)
        doses = list(next_occurrences("08:00", 8, now=FIXED_NOW, until=until, tz=SAO_PAULO))

        assert doses == [utc(2025, 3, 11, 11, 0), utc(2025, 3, 11, 19, 0)]

    def test_yearly_frequency_within_week(self):
        doses = list(next_occurrences("08:00", 8760, now=FIXED_NOW, horizon_days=7, tz=SAO_PAULO))
        assert doses == [utc(2025, 3, 11, 11, 0)]

    def test_invalid_rule_raises(self):
        with pytest.raises(InvalidScheduleError):
            next_occurrences("25:00", 8, now=FIXED_NOW)
        with pytest.raises(InvalidScheduleError):
            next_occurrences("08:00", 0.1, now=FIXED_NOW)


class TestContinueOccurrences:
    """Tests for extending an existing series"""

    def test_next_step_after_recent_anchor(self):
        anchor = FIXED_NOW - timedelta(hours=5)
        doses = list(continue_occurrences(anchor, 8, now=FIXED_NOW, horizon_days=1))
        assert doses[0] == FIXED_NOW + timedelta(hours=3)

    def test_skips_steps_in_the_past(self):
        anchor = FIXED_NOW - timedelta(hours=20)
        doses = list(continue_occurrences(anchor, 8, now=FIXED_NOW, horizon_days=1))
        assert doses[0] == FIXED_NOW + timedelta(hours=4)

    def test_future_anchor_continues_after_it(self):
        anchor = FIXED_NOW + timedelta(days=2)
        doses = list(continue_occurrences(anchor, 12, now=FIXED_NOW, horizon_days=7))

        assert doses[0] == anchor + timedelta(hours=12)
        assert anchor not in doses

    def test_keeps_spacing(self):
        anchor = as_naive_utc(FIXED_NOW - timedelta(hours=1))
        doses = list(continue_occurrences(anchor, 6, now=FIXED_NOW, horizon_days=2))

        for dose in doses:
            assert (dose - as_utc(anchor)) % timedelta(hours=6) == timedelta(0)


class TestBackfill:
    """Tests for reconstructing an already started treatment"""

    def test_history_ends_at_last_dose(self):
        last = FIXED_NOW - timedelta(hours=2)
        plan = backfill(last, 3, 8, now=FIXED_NOW)

        assert isinstance(plan, BackfillPlan)
        assert plan.taken == [
            last - timedelta(hours=16),
            last - timedelta(hours=8),
            last,
        ]
        assert plan.upcoming[0] == last + timedelta(hours=8)

    def test_single_dose(self):
        last = FIXED_NOW - timedelta(hours=1)
        plan = backfill(last, 1, 24, now=FIXED_NOW)
        assert plan.taken == [last]

    def test_upcoming_skips_missed_window(self):
        """Doses due between the last one taken and now are not generated"""
        last = FIXED_NOW - timedelta(hours=30)
        plan = backfill(last, 2, 8, now=FIXED_NOW)

        assert plan.upcoming[0] == last + timedelta(hours=32)
        assert all(d >= FIXED_NOW for d in plan.upcoming)

    def test_rejects_future_last_dose(self):
        with pytest.raises(InvalidBackfillError):
            backfill(FIXED_NOW + timedelta(minutes=1), 2, 8, now=FIXED_NOW)

    def test_rejects_too_old_last_dose(self):
        with pytest.raises(InvalidBackfillError):
            backfill(FIXED_NOW - timedelta(days=400), 2, 8, now=FIXED_NOW)

    @pytest.mark.parametrize("count", [0, -3, 2.5, "3"])
    def test_rejects_invalid_count(self, count):
        with pytest.raises(InvalidBackfillError):
            backfill(FIXED_NOW - timedelta(hours=1), count, 8, now=FIXED_NOW)
