from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from models import Frequency
from periods import PERIOD_TOKENS, InvalidPeriod


CENTS = Decimal("0.01")

# Fixed day counts, not calendar lengths.
FREQUENCY_DAYS: dict[Frequency, int] = {
    Frequency.daily: 1,
    Frequency.weekly: 7,
    Frequency.monthly: 30,
    Frequency.yearly: 365,
}

PERIOD_DAYS: dict[str, int] = {
    "day": 1,
    "week": 7,
    "month": 30,
    "quarter": 90,
    "year": 365,
    "rolling_year": 365,
}


def period_days(period: str) -> Optional[int]:
    if period not in PERIOD_TOKENS:
        raise InvalidPeriod(f"Unknown period: {period!r}")
    return PERIOD_DAYS.get(period)


def daily_rate(amount: Decimal, frequency: Union[Frequency, str]) -> Decimal:
    try:
        days = FREQUENCY_DAYS[Frequency(frequency)]
    except ValueError as exc:
        raise ValueError(f"Unknown budget frequency: {frequency!r}") from exc
    return Decimal(amount) / days


def adjust_budget(
    amount: Decimal, frequency: Union[Frequency, str], period: str
) -> Optional[Decimal]:
    """Scale a budget denominated in ``frequency`` to the length of ``period``.

    Returns ``None`` for the unbounded ``all`` period, which has no length.
    """
    days = period_days(period)
    rate = daily_rate(amount, frequency)
    if days is None:
        return None
    return (rate * days).quantize(CENTS, rounding=ROUND_HALF_UP)
