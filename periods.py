from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


class InvalidPeriod(ValueError):
    pass


PERIOD_TOKENS = (
    "day",
    "week",
    "month",
    "quarter",
    "year",
    "rolling_year",
    "all",
)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, *, desired_day: int) -> date:
    """Shift ``base`` by whole months, snapping ``desired_day`` to month end."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


def month_bounds(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, days_in_month(year, month))


@dataclass(frozen=True)
class Period:
    """Inclusive date range; ``None`` bounds are open."""

    slug: str
    start: Optional[date]
    end: Optional[date]

    @property
    def is_bounded(self) -> bool:
        return self.start is not None and self.end is not None

    def contains(self, value: date) -> bool:
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True


def resolve_period(period: Optional[str], *, today: Optional[date] = None) -> Period:
    """Map a period token onto a concrete window ending at ``today``.

    ``year`` is the calendar year to date (category and income/expense
    reports). ``rolling_year`` is the trailing twelve months used by
    cash-flow style reports.
    """
    today = today or local_today()
    if period == "all":
        return Period("all", None, None)
    if period == "day":
        return Period("day", today, today)
    if period == "week":
        return Period("week", today - timedelta(days=7), today)
    if period == "month":
        return Period("month", today.replace(day=1), today)
    if period == "quarter":
        return Period("quarter", add_months(today, -3, desired_day=today.day), today)
    if period == "year":
        return Period("year", date(today.year, 1, 1), today)
    if period == "rolling_year":
        return Period(
            "rolling_year", add_months(today, -12, desired_day=today.day), today
        )
    raise InvalidPeriod(f"Unknown period: {period!r}")
