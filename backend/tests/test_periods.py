"""
Reporting periods and percentage change used by the dashboards.
"""
from datetime import datetime, timedelta, timezone

import pytest

from utils.periods import (
    EPOCH,
    add_months,
    as_utc,
    first_of_next_month,
    normalize_timespan,
    percentage_change,
    resolve_period,
)

NOW = datetime(2025, 5, 20, 15, 30, tzinfo=timezone.utc)


class TestPercentageChange:

    def test_zero_to_zero_is_zero(self):
        assert percentage_change(0, 0) == 0

    def test_from_zero_to_positive_is_hundred(self):
        assert percentage_change(7, 0) == 100

    def test_growth_and_decline(self):
        assert percentage_change(150, 100) == pytest.approx(50)
        assert percentage_change(25, 100) == pytest.approx(-75)


class TestResolvePeriod:

    def test_last7days(self):
        period = resolve_period("last7days", now=NOW)
        assert period.start == NOW - timedelta(days=7)
        assert period.end == NOW

    def test_unknown_timespan_defaults_to_last30days(self):
        assert resolve_period("fortnight", now=NOW) == resolve_period("last30days", now=NOW)
        assert resolve_period(None, now=NOW).start == NOW - timedelta(days=30)

    def test_calendar_windows_start_at_midnight(self):
        assert resolve_period("mtd", now=NOW).start == datetime(2025, 5, 1, tzinfo=timezone.utc)
        assert resolve_period("qtd", now=NOW).start == datetime(2025, 4, 1, tzinfo=timezone.utc)
        assert resolve_period("ytd", now=NOW).start == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_normalize_timespan(self):
        assert normalize_timespan("qtd") == "qtd"
        assert normalize_timespan("fortnight") == "last30days"
        assert normalize_timespan(None) == "last30days"

    def test_ltd_starts_at_epoch(self):
        assert resolve_period("ltd", now=NOW).start == EPOCH

    def test_previous_period_has_same_length_and_ends_at_start(self):
        period = resolve_period("last7days", now=NOW)
        previous = period.previous()
        assert previous.end == period.start
        assert previous.end - previous.start == period.end - period.start

    def test_query_is_half_open(self):
        period = resolve_period("mtd", now=NOW)
        assert period.as_query() == {"$gte": period.start, "$lt": period.end}


class TestMonthArithmetic:

    def test_add_months_clamps_day(self):
        assert add_months(datetime(2025, 1, 31), 1) == datetime(2025, 2, 28)
        assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)

    def test_add_months_rolls_year(self):
        assert add_months(datetime(2025, 11, 15), 3) == datetime(2026, 2, 15)

    def test_first_of_next_month_in_december(self):
        result = first_of_next_month(datetime(2025, 12, 9, 10, tzinfo=timezone.utc))
        assert result == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_as_utc_marks_naive_values(self):
        assert as_utc(datetime(2025, 1, 1)).tzinfo == timezone.utc
