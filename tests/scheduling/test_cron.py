"""Tests for CronSchedule parsing and due evaluation."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from jobspine.core.errors import ConfigurationError, InvalidScheduleExpression
from jobspine.scheduling.cron import CronSchedule, parse_schedule


def at(hour=12, minute=0, second=0, day=6, month=1, year=2025, micro=0):
    """2025-01-06 is a Monday."""
    return datetime(year, month, day, hour, minute, second, micro, tzinfo=UTC)


class TestParse:
    """Six-field grammar validation."""

    @pytest.mark.parametrize(
        "expression",
        [
            "* * * * * *",
            "0 */5 * * * *",
            "10-40/10 * * * * *",
            "7/15 * * * * *",
            "0 0 12 * JAN-MAR MON-FRI",
            "0 0 0 1,15 * *",
            "0 30 9 * * sun",
            "0 0 0 29 2 *",
            "59 59 23 31 12 6",
        ],
    )
    def test_valid_expressions(self, expression):
        """Supported syntax parses."""
        schedule = CronSchedule.parse(expression)
        assert schedule.expression == expression

    @pytest.mark.parametrize(
        "expression",
        [
            "",
            "* * * * *",
            "* * * * * * *",
            "60 * * * * *",
            "* 60 * * * *",
            "* * 24 * * *",
            "* * * 0 * *",
            "* * * 32 * *",
            "* * * * 13 *",
            "* * * * * 7",
            "* * * L * *",
            "* * * 15W * *",
            "* * * * * 1#2",
            "* * * ? * *",
            "H * * * * *",
            "5-1 * * * * *",
            "*/0 * * * * *",
            "1,,2 * * * * *",
            "JAN * * * * *",
            "* * * * * MONDAY",
            "0 0 0 30 2 *",
            "0 0 0 31 4,6,9,11 *",
        ],
    )
    def test_invalid_expressions_rejected(self, expression):
        """Unsupported syntax, out-of-range values and impossible dates are rejected."""
        with pytest.raises(InvalidScheduleExpression):
            CronSchedule.parse(expression)

    def test_invalid_expression_is_configuration_error(self):
        """Schedule errors are configuration errors with a reason."""
        with pytest.raises(ConfigurationError) as exc_info:
            CronSchedule.parse("* * * * *")
        assert "expected 6 fields" in exc_info.value.reason

    def test_non_string_rejected(self):
        with pytest.raises(InvalidScheduleExpression):
            CronSchedule.parse(None)

    def test_whitespace_normalized(self):
        """Extra whitespace between fields is ignored."""
        schedule = CronSchedule.parse("  0   */5 *  * * *  ")
        assert schedule.expression == "0 */5 * * * *"

    def test_normalized_expands_restricted_fields(self):
        """Restricted fields expand to explicit lists, wildcards stay."""
        schedule = CronSchedule.parse("*/20 0 12 * * MON-WED")
        assert schedule.normalized == "0,20,40 0 12 * * 1,2,3"

    def test_step_from_literal_runs_to_field_end(self):
        schedule = CronSchedule.parse("7/15 * * * * *")
        assert schedule.normalized.split()[0] == "7,22,37,52"

    def test_names_case_insensitive(self):
        assert CronSchedule.parse("0 0 0 * jan Sun").normalized == "0 0 0 * 1 0"

    def test_parse_schedule_accepts_parsed(self):
        schedule = CronSchedule.parse("0 * * * * *")
        assert parse_schedule(schedule) is schedule
        assert parse_schedule("0 * * * * *") == schedule


class TestMatches:
    """Pure instant matching."""

    def test_every_second_matches_anything(self):
        schedule = CronSchedule.parse("* * * * * *")
        assert schedule.matches(at(3, 17, 42))
        assert schedule.matches(at(23, 59, 59, day=31, month=12))

    def test_sub_second_precision_ignored(self):
        schedule = CronSchedule.parse("30 * * * * *")
        assert schedule.matches(at(12, 0, 30, micro=999_999))
        assert not schedule.matches(at(12, 0, 31))

    def test_specific_time(self):
        schedule = CronSchedule.parse("0 5 12 * * *")
        assert schedule.matches(at(12, 5, 0))
        assert not schedule.matches(at(12, 5, 1))
        assert not schedule.matches(at(13, 5, 0))

    def test_non_utc_instant_converted(self):
        """Instants in other zones are compared in UTC."""
        schedule = CronSchedule.parse("0 5 12 * * *")
        plus_one = timezone(timedelta(hours=1))
        assert schedule.matches(datetime(2025, 1, 6, 13, 5, 0, tzinfo=plus_one))

    def test_naive_instant_treated_as_utc(self):
        schedule = CronSchedule.parse("0 5 12 * * *")
        assert schedule.matches(datetime(2025, 1, 6, 12, 5, 0))

    def test_sunday_is_zero(self):
        """Day-of-week 0 and SUN both mean Sunday (2025-01-05)."""
        assert CronSchedule.parse("0 0 0 * * 0").matches(at(0, day=5))
        assert CronSchedule.parse("0 0 0 * * SUN").matches(at(0, day=5))
        assert not CronSchedule.parse("0 0 0 * * 0").matches(at(0, day=6))

    def test_day_of_week_only(self):
        schedule = CronSchedule.parse("0 0 0 * * MON")
        assert schedule.matches(at(0, day=6))
        assert not schedule.matches(at(0, day=7))

    def test_day_of_month_only_ignores_weekday(self):
        schedule = CronSchedule.parse("0 0 0 13 * *")
        assert schedule.matches(at(0, day=13))
        assert not schedule.matches(at(0, day=10))  # a Friday

    def test_day_of_month_and_week_are_or_combined(self):
        """Both restricted: either one matching is enough."""
        schedule = CronSchedule.parse("0 0 0 13 * FRI")
        assert schedule.matches(at(0, day=13))  # Monday the 13th
        assert schedule.matches(at(0, day=10))  # Friday the 10th
        assert not schedule.matches(at(0, day=7))  # Tuesday the 7th

    def test_month_restriction(self):
        schedule = CronSchedule.parse("0 0 0 1 FEB *")
        assert schedule.matches(at(0, day=1, month=2))
        assert not schedule.matches(at(0, day=1, month=1))

    def test_deterministic(self):
        """Same expression and instant always give the same answer."""
        instant = at(12, 5, 0)
        answers = {CronSchedule.parse("0 */5 * * * *").matches(instant) for _ in range(20)}
        assert answers == {True}


class TestNextAndPrevious:
    """Firing search."""

    def test_next_after_is_strictly_after(self):
        schedule = CronSchedule.parse("0 */5 * * * *")
        assert schedule.next_after(at(12, 0, 0)) == at(12, 5, 0)

    def test_next_after_from_between_firings(self):
        schedule = CronSchedule.parse("0 */5 * * * *")
        assert schedule.next_after(at(12, 3, 17, micro=500_000)) == at(12, 5, 0)

    def test_next_after_rolls_over_day(self):
        schedule = CronSchedule.parse("0 0 9 * * *")
        assert schedule.next_after(at(10, 0, 0)) == at(9, 0, 0, day=7)

    def test_next_after_with_or_days(self):
        schedule = CronSchedule.parse("0 0 0 13 * FRI")
        assert schedule.next_after(at(12, 0, 0)) == at(0, 0, 0, day=10)

    def test_next_after_returns_aware_utc(self):
        firing = CronSchedule.parse("* * * * * *").next_after(at())
        assert firing.tzinfo is not None
        assert firing.utcoffset() == timedelta(0)

    def test_latest_at_or_before_includes_instant(self):
        schedule = CronSchedule.parse("0 */5 * * * *")
        assert schedule.latest_at_or_before(at(12, 5, 0)) == at(12, 5, 0)

    def test_latest_at_or_before_between_firings(self):
        schedule = CronSchedule.parse("0 */5 * * * *")
        assert schedule.latest_at_or_before(at(12, 7, 30)) == at(12, 5, 0)

    def test_upcoming(self):
        schedule = CronSchedule.parse("0 */5 * * * *")
        assert schedule.upcoming(at(12, 0, 0), 3) == [at(12, 5), at(12, 10), at(12, 15)]


class TestIsDue:
    """Window evaluation used by the loop."""

    def test_every_second_due_each_tick(self):
        schedule = CronSchedule.parse("* * * * * *")
        previous = at(12, 0, 0)
        for _ in range(10):
            now = previous + timedelta(seconds=1)
            assert schedule.is_due(previous, now)
            previous = now

    def test_due_exactly_on_boundary(self):
        schedule = CronSchedule.parse("0 */5 * * * *")
        assert schedule.is_due(at(12, 4, 59), at(12, 5, 0))

    def test_empty_window_never_due(self):
        """Two wakes within the same second do not double-fire."""
        schedule = CronSchedule.parse("* * * * * *")
        assert not schedule.is_due(at(12, 5, 0, micro=100), at(12, 5, 0, micro=900_000))

    def test_late_wake_still_sees_missed_firing(self):
        schedule = CronSchedule.parse("0 */5 * * * *")
        assert schedule.is_due(at(12, 3, 0), at(12, 6, 30))

    def test_window_without_firing(self):
        schedule = CronSchedule.parse("0 */5 * * * *")
        assert not schedule.is_due(at(12, 5, 0), at(12, 9, 59))

    def test_specific_time_due_once_per_match(self):
        """Scanning an hour second by second finds exactly one due tick."""
        schedule = CronSchedule.parse("30 15 12 * * *")
        previous = at(11, 59, 59)
        due = []
        for second in range(3600):
            now = at(12, 0, 0) + timedelta(seconds=second)
            if schedule.is_due(previous, now):
                due.append(now)
            previous = now
        assert due == [at(12, 15, 30)]

    def test_every_minute_due_sixty_times_an_hour(self):
        schedule = CronSchedule.parse("0 * * * * *")
        previous = at(11, 59, 59)
        count = 0
        for second in range(3600):
            now = at(12, 0, 0) + timedelta(seconds=second)
            count += schedule.is_due(previous, now)
            previous = now
        assert count == 60
