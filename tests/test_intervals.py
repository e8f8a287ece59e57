import pytest
from datetime import datetime

from billing_engine.billing.intervals import add_interval, next_period
from billing_engine.models import BillingInterval


def test_month_end_anchor_is_clamped_then_restored():
    anchor = datetime(2025, 1, 31, 9, 0)

    feb = add_interval(anchor, BillingInterval.MONTHLY, anchor_day=anchor.day)
    mar = add_interval(feb, BillingInterval.MONTHLY, anchor_day=anchor.day)
    apr = add_interval(mar, BillingInterval.MONTHLY, anchor_day=anchor.day)

    assert feb == datetime(2025, 2, 28, 9, 0)
    assert mar == datetime(2025, 3, 31, 9, 0)
    assert apr == datetime(2025, 4, 30, 9, 0)


def test_leap_february():
    assert add_interval(datetime(2024, 1, 31), "monthly") == datetime(2024, 2, 29)


def test_without_anchor_day_drifts_to_clamped_day():
    assert add_interval(datetime(2025, 2, 28), BillingInterval.MONTHLY) == datetime(2025, 3, 28)


def test_weekly_and_multi_month_counts():
    assert add_interval(datetime(2025, 1, 29), BillingInterval.WEEKLY) == datetime(2025, 2, 5)
    assert add_interval(datetime(2025, 1, 1), BillingInterval.WEEKLY, count=2) == datetime(2025, 1, 15)
    assert add_interval(datetime(2025, 1, 15), BillingInterval.MONTHLY, count=3) == datetime(2025, 4, 15)


def test_yearly_from_leap_day():
    anchor = datetime(2024, 2, 29)

    first = add_interval(anchor, BillingInterval.YEARLY, anchor_day=29)
    assert first == datetime(2025, 2, 28)
    assert add_interval(datetime(2027, 2, 28), BillingInterval.YEARLY, anchor_day=29) == datetime(2028, 2, 29)


def test_count_must_be_positive():
    with pytest.raises(ValueError):
        add_interval(datetime(2025, 1, 1), BillingInterval.MONTHLY, count=0)


def test_unknown_interval_is_rejected():
    with pytest.raises(ValueError):
        add_interval(datetime(2025, 1, 1), "fortnightly")


def test_next_period_starts_where_the_last_one_ended():
    start, end = next_period(
        datetime(2025, 2, 28, 9, 0),
        BillingInterval.MONTHLY,
        anchor=datetime(2024, 12, 31, 9, 0),
    )

    assert start == datetime(2025, 2, 28, 9, 0)
    assert end == datetime(2025, 3, 31, 9, 0)
