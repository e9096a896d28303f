from datetime import date, datetime, time

import pytest

from core.date_helper import (
    current_due_date,
    in_quiet_hours,
    month_bounds,
    next_due_date,
    parse_gateway_timestamp,
)


@pytest.mark.parametrize(
    "today, due_day, expected",
    [
        (date(2026, 1, 20), 5, date(2026, 2, 5)),
        (date(2026, 1, 3), 5, date(2026, 1, 5)),
        (date(2026, 1, 5), 5, date(2026, 2, 5)),
        (date(2026, 1, 31), 31, date(2026, 2, 28)),
        (date(2028, 1, 31), 31, date(2028, 2, 29)),
        (date(2026, 2, 10), 31, date(2026, 2, 28)),
        (date(2025, 12, 20), 5, date(2026, 1, 5)),
    ],
)
def test_next_due_date(today, due_day, expected):
    assert next_due_date(today, due_day) == expected


def test_current_due_date_includes_the_due_day_itself():
    assert current_due_date(date(2026, 3, 5), 5) == date(2026, 3, 5)
    assert current_due_date(date(2026, 3, 6), 5) == date(2026, 4, 5)
    assert current_due_date(date(2026, 2, 1), 30) == date(2026, 2, 28)


def test_month_bounds():
    assert month_bounds(date(2026, 2, 14)) == (date(2026, 2, 1), date(2026, 2, 28))


def test_parse_gateway_timestamp():
    assert parse_gateway_timestamp("20260205143015") == datetime(2026, 2, 5, 14, 30, 15)
    assert parse_gateway_timestamp(20260205143015) == datetime(2026, 2, 5, 14, 30, 15)
    assert parse_gateway_timestamp("not-a-date") is None
    assert parse_gateway_timestamp(None) is None
    assert parse_gateway_timestamp("") is None


def test_quiet_hours_wrapping_midnight():
    start, end = time(22, 0), time(8, 0)
    assert in_quiet_hours(time(23, 30), start, end)
    assert in_quiet_hours(time(7, 59), start, end)
    assert not in_quiet_hours(time(8, 0), start, end)
    assert not in_quiet_hours(time(12, 0), start, end)


def test_quiet_hours_same_day_window():
    assert in_quiet_hours(time(13, 0), time(12, 0), time(14, 0))
    assert not in_quiet_hours(time(14, 0), time(12, 0), time(14, 0))


def test_quiet_hours_disabled():
    assert not in_quiet_hours(time(23, 0), None, time(8, 0))
    assert not in_quiet_hours(time(23, 0), time(8, 0), time(8, 0))
