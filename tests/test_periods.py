from datetime import datetime

import pytest

from errors import InvalidDateRange, InvalidMonthKey, InvalidReportGrouping, InvalidReportScope
from periods import (
    SCOPE_RANGE,
    month_keys_between,
    parse_utc_timestamp,
    period_key_for,
    resolve_period,
)


def test_monthly_period_covers_whole_month() -> None:
    period = resolve_period("monthly", month_key="2026-02")

    assert period.start == datetime(2026, 2, 1)
    assert period.end == datetime(2026, 3, 1)
    assert period.from_utc == "2026-02-01T00:00:00Z"
    assert period.to_utc == "2026-02-28T23:59:59.999999999Z"
    assert period.month_keys == ["2026-02"]
    assert period.contains(datetime(2026, 2, 28, 23, 59, 59, 999999))
    assert not period.contains(datetime(2026, 3, 1))


def test_quarterly_and_bimonthly_periods_cross_year_boundaries() -> None:
    quarter = resolve_period("quarterly", month_key="2026-11")
    assert quarter.end == datetime(2027, 2, 1)
    assert quarter.month_keys == ["2026-11", "2026-12", "2027-01"]

    bimonthly = resolve_period("bimonthly", month_key="2026-12")
    assert bimonthly.month_keys == ["2026-12", "2027-01"]
    assert bimonthly.last_day.isoformat() == "2027-01-31"


def test_range_period_with_dates_includes_the_last_day() -> None:
    period = resolve_period(None, date_from="2026-02-10", date_to="2026-02-10")

    assert period.scope == SCOPE_RANGE
    assert period.start == datetime(2026, 2, 10)
    assert period.end == datetime(2026, 2, 11)


def test_range_period_with_timestamps_is_inclusive_of_the_end_instant() -> None:
    period = resolve_period(
        "range",
        date_from="2026-02-01T10:00:00Z",
        date_to="2026-02-03T12:30:00+02:00",
    )

    assert period.start == datetime(2026, 2, 1, 10)
    assert period.end == datetime(2026, 2, 3, 10, 30, 0, 1)
    assert period.contains(datetime(2026, 2, 3, 10, 30))
    assert period.month_keys == ["2026-02"]


def test_range_with_from_after_to_fails() -> None:
    with pytest.raises(InvalidDateRange):
        resolve_period("range", date_from="2026-03-01", date_to="2026-02-01")


def test_range_requires_both_bounds() -> None:
    with pytest.raises(InvalidDateRange):
        resolve_period("range", date_from="2026-03-01")
    with pytest.raises(InvalidDateRange):
        resolve_period("range", date_from="not-a-date", date_to="2026-03-01")


@pytest.mark.parametrize(
    "key", ["2026-2", "2026-13", "26-02", "2026/02", "2026-00", "", "0000-01", "9999-12"]
)
def test_month_keys_must_be_exact(key: str) -> None:
    with pytest.raises(InvalidMonthKey):
        resolve_period("monthly", month_key=key)


def test_preset_windows_must_end_inside_the_calendar() -> None:
    with pytest.raises(InvalidMonthKey):
        resolve_period("quarterly", month_key="9999-11")
    assert resolve_period("monthly", month_key="9999-11").month_keys == ["9999-11"]
    with pytest.raises(InvalidDateRange):
        resolve_period("range", date_from="9999-12-01", date_to="9999-12-31")


def test_unknown_scope_and_grouping_fail() -> None:
    with pytest.raises(InvalidReportScope):
        resolve_period("weekly", month_key="2026-02")
    with pytest.raises(InvalidReportGrouping):
        period_key_for(datetime(2026, 2, 1), "year")


def test_period_keys_for_groupings() -> None:
    moment = datetime(2027, 1, 1, 8, 30)

    assert period_key_for(moment, "day") == "2027-01-01"
    assert period_key_for(moment, "week") == "2026-W53"
    assert period_key_for(moment, "month") == "2027-01"


def test_month_keys_between_is_ordered_and_deduplicated() -> None:
    keys = month_keys_between(datetime(2026, 1, 31, 23), datetime(2026, 4, 1))
    assert keys == ["2026-01", "2026-02", "2026-03"]
    assert month_keys_between(datetime(2026, 4, 1), datetime(2026, 4, 1)) == []


def test_parse_utc_timestamp_truncates_nanoseconds_and_normalizes_offsets() -> None:
    assert parse_utc_timestamp("2026-02-03T10:00:00.123456789Z") == datetime(
        2026, 2, 3, 10, 0, 0, 123456
    )
    assert parse_utc_timestamp("2026-02-03T01:00:00-05:00") == datetime(2026, 2, 3, 6)


def test_parse_utc_timestamp_accepts_short_fractions() -> None:
    assert parse_utc_timestamp("2026-02-03T10:00:00.5Z") == datetime(2026, 2, 3, 10, 0, 0, 500000)
    assert parse_utc_timestamp("2026-02-03T10:00:00.1234+01:00") == datetime(
        2026, 2, 3, 9, 0, 0, 123400
    )
