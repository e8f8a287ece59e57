from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from billing_engine.models.plan import BillingInterval


def add_interval(moment: datetime, interval, count: int = 1, anchor_day: int = None) -> datetime:
    """
    Move ``moment`` forward by ``count`` billing intervals.

    Months and years are calendar-aware: the day is clamped to the last day
    of a shorter month instead of rolling over, and ``anchor_day`` restores
    the original billing day once the month is long enough again
    (Jan 31 -> Feb 28 -> Mar 31).
    """
    interval = BillingInterval(interval)
    if count < 1:
        raise ValueError("count must be positive")

    if interval is BillingInterval.WEEKLY:
        return moment + timedelta(days=7 * count)

    day = anchor_day or moment.day
    if interval is BillingInterval.MONTHLY:
        return moment + relativedelta(months=count, day=day)
    return moment + relativedelta(years=count, day=day)


def next_period(period_end: datetime, interval, count: int = 1, anchor: datetime = None):
    """Return (start, end) of the period following one that ends at ``period_end``."""
    anchor_day = anchor.day if anchor else None
    return period_end, add_interval(period_end, interval, count, anchor_day=anchor_day)
