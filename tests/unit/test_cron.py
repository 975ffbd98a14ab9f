"""
Unit tests for cron parsing and matching.
"""

from datetime import datetime, timedelta, timezone

import pytest

from workflow_automation.triggers.cron import (
    get_next_cron_time,
    matches_cron,
    parse_cron_expression,
    parse_cron_field,
)

UTC = timezone.utc
# Monday
MONDAY_1230 = datetime(2026, 2, 9, 12, 30, tzinfo=UTC)


class TestParseCronField:
    """Tests for single-field expansion."""

    def test_single_value(self):
        """Test a bare number."""
        assert parse_cron_field("5", 0, 59) == [5]

    def test_wildcard(self):
        """Test wildcard expands to the full range."""
        assert parse_cron_field("*", 0, 5) == [0, 1, 2, 3, 4, 5]

    def test_range(self):
        """Test n-m range."""
        assert parse_cron_field("2-5", 0, 10) == [2, 3, 4, 5]

    def test_list(self):
        """Test comma-separated list."""
        assert parse_cron_field("1,3,5", 0, 10) == [1, 3, 5]

    def test_step_over_wildcard(self):
        """Test */n starts at the field minimum."""
        assert parse_cron_field("*/15", 0, 59) == [0, 15, 30, 45]

    def test_step_over_range(self):
        """Test n-m/s."""
        assert parse_cron_field("0-30/10", 0, 59) == [0, 10, 20, 30]

    def test_step_from_bare_start_runs_to_max(self):
        """Test n/s runs from n to the field maximum."""
        assert parse_cron_field("50/5", 0, 59) == [50, 55]

    def test_out_of_range_value_dropped(self):
        """Test out-of-range values are dropped rather than clamped."""
        assert parse_cron_field("100", 0, 59) == []

    def test_invalid_tokens_dropped(self):
        """Test malformed tokens are ignored while valid ones survive."""
        assert parse_cron_field("abc,7", 0, 59) == [7]

    def test_non_ascii_digits_dropped(self):
        """Test Unicode digit characters are treated as malformed tokens."""
        assert parse_cron_field("\u00b2,7", 0, 59) == [7]
        assert parse_cron_field("1-\u00b3", 0, 59) == []

    def test_list_is_sorted_and_deduplicated(self):
        """Test overlapping list entries collapse into one sorted list."""
        assert parse_cron_field("30,0-2,1", 0, 59) == [0, 1, 2, 30]


class TestParseCronExpression:
    """Tests for whole-expression parsing."""

    def test_standard_expression(self):
        """Test a standard 5-field expression."""
        fields = parse_cron_expression("0 9 * * 1")

        assert fields is not None
        assert fields.minute == [0]
        assert fields.hour == [9]
        assert fields.day_of_week == [1]

    def test_wildcards(self):
        """Test wildcard field sizes."""
        fields = parse_cron_expression("* * * * *")

        assert fields is not None
        assert len(fields.minute) == 60
        assert len(fields.hour) == 24
        assert fields.day_of_month == list(range(1, 32))
        assert fields.month == list(range(1, 13))
        assert fields.day_of_week == list(range(0, 7))

    @pytest.mark.parametrize("expression", ["* * *", "* * * * * *", "", "invalid"])
    def test_wrong_field_count(self, expression):
        """Test expressions without exactly five fields are rejected."""
        assert parse_cron_expression(expression) is None

    def test_field_with_no_valid_values(self):
        """Test a field that expands to nothing invalidates the expression."""
        assert parse_cron_expression("99 * * * *") is None


class TestMatchesCron:
    """Tests for time matching."""

    def test_every_minute(self):
        """Test wildcard matches any time."""
        assert matches_cron("* * * * *", MONDAY_1230)

    def test_specific_time_and_weekday(self):
        """Test minute, hour and weekday all have to match."""
        assert matches_cron("30 12 * * 1", MONDAY_1230)
        assert not matches_cron("31 12 * * 1", MONDAY_1230)

    def test_sunday_is_zero(self):
        """Test day-of-week 0 means Sunday."""
        assert not matches_cron("30 12 * * 0", MONDAY_1230)
        assert matches_cron("30 12 * * 0", MONDAY_1230 - timedelta(days=1))

    def test_daily_at_three(self):
        """Test '0 3 * * *' matches 03:00 UTC on any day."""
        for day in range(1, 8):
            assert matches_cron("0 3 * * *", datetime(2026, 3, day, 3, 0, tzinfo=UTC))
        assert not matches_cron("0 3 * * *", datetime(2026, 3, 1, 3, 1, tzinfo=UTC))
        assert not matches_cron("0 3 * * *", datetime(2026, 3, 1, 4, 0, tzinfo=UTC))

    def test_quarter_hours(self):
        """Test '*/15' matches quarter hours only."""
        for minute in (0, 15, 30, 45):
            assert matches_cron("*/15 * * * *", MONDAY_1230.replace(minute=minute))
        assert not matches_cron("*/15 * * * *", MONDAY_1230.replace(minute=50))

    def test_evaluated_in_utc(self):
        """Test non-UTC datetimes are converted and the tz argument is ignored."""
        plus_two = timezone(timedelta(hours=2))
        local = datetime(2026, 2, 9, 14, 30, tzinfo=plus_two)

        assert matches_cron("30 12 * * *", local, "Europe/Berlin")

    def test_naive_datetime_taken_as_utc(self):
        """Test naive datetimes are treated as UTC."""
        assert matches_cron("30 12 * * *", datetime(2026, 2, 9, 12, 30))

    def test_invalid_expression_never_matches(self):
        """Test an unparseable expression is a non-match."""
        assert not matches_cron("not a cron", MONDAY_1230)

    def test_non_ascii_digit_expression_never_matches(self):
        """Test an expression made only of Unicode digits is rejected, not raised."""
        assert parse_cron_expression("\u00b2 * * * *") is None
        assert not matches_cron("\u00b2 * * * *", MONDAY_1230)


class TestGetNextCronTime:
    """Tests for next-run computation."""

    def test_every_minute(self):
        """Test the next whole minute is returned."""
        next_time = get_next_cron_time("* * * * *", MONDAY_1230)

        assert next_time == datetime(2026, 2, 9, 12, 31, tzinfo=UTC)

    def test_strictly_after(self):
        """Test a matching 'after' time is not returned itself."""
        next_time = get_next_cron_time("30 12 * * *", MONDAY_1230)

        assert next_time == datetime(2026, 2, 10, 12, 30, tzinfo=UTC)

    def test_seconds_are_truncated(self):
        """Test scanning starts at the next whole minute."""
        after = datetime(2026, 2, 9, 12, 29, 45, 500, tzinfo=UTC)

        assert get_next_cron_time("30 * * * *", after) == MONDAY_1230

    def test_specific_time_later_today(self):
        """Test a later time on the same day."""
        next_time = get_next_cron_time("30 14 * * *", datetime(2026, 2, 9, 12, 0, tzinfo=UTC))

        assert next_time == datetime(2026, 2, 9, 14, 30, tzinfo=UTC)

    def test_new_year(self):
        """Test yearly schedule crosses into the next year."""
        next_time = get_next_cron_time("0 0 1 1 *", datetime(2024, 6, 15, tzinfo=UTC))

        assert next_time == datetime(2025, 1, 1, 0, 0, tzinfo=UTC)

    def test_invalid_expression(self):
        """Test invalid expressions yield None."""
        assert get_next_cron_time("invalid", MONDAY_1230) is None

    def test_no_match_within_a_year(self):
        """Test an impossible date yields None."""
        assert get_next_cron_time("0 0 31 2 *", MONDAY_1230) is None
