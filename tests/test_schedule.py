"""Tests for schedule.py -- cron parsing and next fire time."""

from datetime import datetime, timedelta, timezone

import pytest

from gitwatcher.errors import InvalidScheduleError
from gitwatcher.schedule import ScheduleExpression, parse

UTC = timezone.utc


class TestParse:
    def test_every_minute(self):
        expr = parse("* * * * *")
        assert isinstance(expr, ScheduleExpression)
        assert expr.fields == ["*", "*", "*", "*", "*"]

    def test_whitespace_normalized(self):
        assert str(parse("  */5   *  * * *  ")) == "*/5 * * * *"

    def test_lists_ranges_steps(self):
        assert str(parse("0,15,30,45 9-17 * * 1-5")) == "0,15,30,45 9-17 * * 1-5"
        assert str(parse("0-30/10 */2 1 1,6 0")) == "0-30/10 */2 1 1,6 0"

    @pytest.mark.parametrize(
        "spec",
        [
            "",
            "* * * *",
            "* * * * * *",
            "60 * * * *",
            "* 24 * * *",
            "* * 0 * *",
            "* * 32 * *",
            "* * * 13 *",
            "* * * 0 *",
            "* * * * 7",
            "abc * * * *",
            "1,,2 * * * *",
            "5-1 * * * *",
            "*/0 * * * *",
            "-1 * * * *",
        ],
    )
    def test_malformed_rejected(self, spec):
        with pytest.raises(InvalidScheduleError):
            parse(spec)

    def test_non_string_rejected(self):
        with pytest.raises(InvalidScheduleError, match="must be a string"):
            parse(None)  # type: ignore[arg-type]

    def test_field_count_in_message(self):
        with pytest.raises(InvalidScheduleError, match="5 fields, got 4"):
            parse("* * * *")


class TestNext:
    def test_every_minute_is_next_minute(self):
        after = datetime(2024, 3, 1, 10, 15, 30, tzinfo=UTC)
        assert parse("* * * * *").next(after) == datetime(2024, 3, 1, 10, 16, tzinfo=UTC)

    def test_strictly_after_on_exact_match(self):
        after = datetime(2024, 3, 1, 10, 0, tzinfo=UTC)
        assert parse("0 * * * *").next(after) == datetime(2024, 3, 1, 11, 0, tzinfo=UTC)

    def test_result_matches_every_field(self):
        after = datetime(2024, 3, 1, 10, 7, tzinfo=UTC)  # a Friday
        result = parse("30 9 * * 1").next(after)
        assert result == datetime(2024, 3, 4, 9, 30, tzinfo=UTC)
        assert result.weekday() == 0

    def test_step_field(self):
        after = datetime(2024, 3, 1, 10, 7, tzinfo=UTC)
        assert parse("*/15 * * * *").next(after) == datetime(2024, 3, 1, 10, 15, tzinfo=UTC)

    def test_month_rollover(self):
        after = datetime(2024, 1, 31, 23, 59, tzinfo=UTC)
        assert parse("0 0 1 * *").next(after) == datetime(2024, 2, 1, 0, 0, tzinfo=UTC)

    def test_preserves_timezone(self):
        tz = timezone(timedelta(hours=2))
        after = datetime(2024, 3, 1, 10, 15, tzinfo=tz)
        result = parse("0 12 * * *").next(after)
        assert result.utcoffset() == timedelta(hours=2)
        assert result.hour == 12

    def test_monotonic(self):
        expr = parse("*/7 * * * *")
        t = datetime(2024, 3, 1, 0, 0, tzinfo=UTC)
        for _ in range(20):
            nxt = expr.next(t)
            assert nxt > t
            t = nxt
