import math
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

SECONDS_PER_DAY = 86400
CENT = Decimal("0.01")


@dataclass(frozen=True)
class ProrationResult:
    credit_amount: Decimal
    charge_amount: Decimal
    net_amount: Decimal
    prorated_days: int
    total_days: int

    def to_dict(self):
        return {
            "credit_amount": str(self.credit_amount),
            "charge_amount": str(self.charge_amount),
            "net_amount": str(self.net_amount),
            "prorated_days": self.prorated_days,
            "total_days": self.total_days,
        }


def round_money(value) -> Decimal:
    """Two decimal places, ties away from zero."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _ceil_days(delta) -> int:
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def calculate_proration(
    period_start: datetime,
    period_end: datetime,
    current_price,
    new_price,
    now: datetime,
) -> ProrationResult:
    """
    Credit for the unused part of the current price and charge for the same
    span at the new price. Pure: no I/O, no clock reads.
    """
    if period_end <= period_start:
        raise ValueError("period_end must be after period_start")

    current_price = Decimal(current_price)
    new_price = Decimal(new_price)

    total_days = _ceil_days(period_end - period_start)
    remaining_days = max(0, _ceil_days(period_end - now))
    # A partial trailing day can push remaining above total when now < start
    remaining_days = min(remaining_days, total_days)

    credit = current_price / total_days * remaining_days
    charge = new_price / total_days * remaining_days

    credit_amount = round_money(credit)
    charge_amount = round_money(charge)
    return ProrationResult(
        credit_amount=credit_amount,
        charge_amount=charge_amount,
        net_amount=round_money(charge - credit),
        prorated_days=remaining_days,
        total_days=total_days,
    )


def unused_time_credit(period_start: datetime, period_end: datetime, price, now: datetime) -> Decimal:
    """Refundable value of the rest of the period: the proration credit with nothing recharged."""
    return calculate_proration(period_start, period_end, price, Decimal("0"), now).credit_amount
