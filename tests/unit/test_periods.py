"""
Unit Tests - Period Bucketing
"""
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest

from bizmetrics.analytics.periods import (
    Period,
    bucket_key,
    day_bounds,
    hour_of,
    month_bounds,
    shift_months,
    sql_timestamp,
    to_datetime,
    to_float,
)


class TestBucketKey:
    """Tests for bucket_key"""

    def test_iso_week_crosses_year_boundary(self):
        """2023-01-01 is a Sunday and belongs to the last ISO week of 2022"""
        assert bucket_key(datetime(2023, 1, 1), Period.WEEK) == "2022-W52"

    def test_all_granularities(self):
        ts = datetime(2024, 3, 5, 14, 30, 12)

        assert bucket_key(ts, Period.HOUR) == "2024-03-05 14:00:00"
        assert bucket_key(ts, Period.DAY) == "2024-03-05"
        assert bucket_key(ts, Period.WEEK) == "2024-W10"
        assert bucket_key(ts, Period.MONTH) == "2024-03"

    def test_accepts_strings_and_dates(self):
        assert bucket_key("2024-03-05T23:59:59", "day") == "2024-03-05"
        assert bucket_key(date(2024, 3, 5), "month") == "2024-03"

    def test_unknown_period_rejected(self):
        with pytest.raises(ValueError):
            bucket_key(datetime(2024, 3, 5), "fortnight")


class TestPeriod:
    """Tests for Period parsing"""

    @pytest.mark.parametrize("raw, expected", [
        ("hourly", Period.HOUR),
        ("daily", Period.DAY),
        ("Weekly", Period.WEEK),
        ("MONTH", Period.MONTH),
        ("day", Period.DAY),
    ])
    def test_dashboard_spellings(self, raw, expected):
        assert Period(raw) is expected


class TestCoercions:
    """Tests for driver value coercions"""

    def test_aware_datetime_converted_to_naive_utc(self):
        aware = datetime(2024, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_datetime(aware) == datetime(2024, 3, 1, 10, 0)

    def test_zulu_string(self):
        assert to_datetime("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, 0)

    def test_sqlite_storage_string(self):
        assert to_datetime("2024-03-01 10:00:00.000000") == datetime(2024, 3, 1, 10, 0)

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            to_datetime(42)

    @pytest.mark.parametrize("value", [
        timedelta(hours=19, minutes=30),
        time(19, 30),
        "19:30:00.000000",
        datetime(2024, 3, 1, 19, 30),
    ])
    def test_hour_of(self, value):
        assert hour_of(value) == 19

    def test_sql_timestamp_matches_sqlite_format(self):
        assert sql_timestamp(datetime(2024, 3, 1, 10, 0)) == "2024-03-01 10:00:00.000000"

    @pytest.mark.parametrize("value, expected", [
        (Decimal("12.50"), 12.5),
        ("7.25", 7.25),
        (3, 3.0),
        (None, 0.0),
    ])
    def test_to_float(self, value, expected):
        assert to_float(value) == expected


class TestCalendar:
    """Tests for month arithmetic"""

    def test_month_bounds_leap_year(self):
        assert month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))

    def test_shift_months_clamps_day(self):
        assert shift_months(datetime(2024, 3, 31, 9), -1) == datetime(2024, 2, 29, 9)

    def test_shift_months_across_year(self):
        assert shift_months(datetime(2024, 1, 15), -2) == datetime(2023, 11, 15)

    def test_day_bounds_cover_whole_day(self):
        start, end = day_bounds("2024-03-01 15:30:00")

        assert start == datetime(2024, 3, 1)
        assert end == datetime.combine(date(2024, 3, 1), time.max)
