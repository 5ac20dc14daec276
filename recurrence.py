from datetime import date, timedelta
from typing import Iterator, Optional, Protocol

from models import Frequency
from periods import InvalidPeriod, add_months, days_in_month


class Schedule(Protocol):
    start_date: date
    end_date: Optional[date]
    frequency: Frequency


def iter_dates(start: Optional[date], end: Optional[date]) -> Iterator[date]:
    """Yield every date from ``start`` to ``end`` inclusive."""
    if start is None or end is None:
        raise InvalidPeriod("Date series requires both a start and an end")
    if end < start:
        raise InvalidPeriod(f"Window end {end} is before start {start}")
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _effective_window(
    schedule: Schedule, window_start: date, window_end: date
) -> Optional[tuple[date, date]]:
    start = max(window_start, schedule.start_date)
    end = window_end
    if schedule.end_date is not None:
        end = min(end, schedule.end_date)
    if end < start:
        return None
    return start, end


def _month_index(value: date) -> int:
    return value.year * 12 + value.month - 1


def _monthly(schedule: Schedule, start: date, end: date) -> Iterator[date]:
    anchor = schedule.start_date
    offset = _month_index(start) - _month_index(anchor)
    while True:
        candidate = add_months(anchor, offset, desired_day=anchor.day)
        if candidate > end:
            return
        if candidate >= start:
            yield candidate
        offset += 1


def _yearly(schedule: Schedule, start: date, end: date) -> Iterator[date]:
    anchor = schedule.start_date
    for year in range(start.year, end.year + 1):
        day = min(anchor.day, days_in_month(year, anchor.month))
        candidate = date(year, anchor.month, day)
        if start <= candidate <= end:
            yield candidate


def _weekly(schedule: Schedule, start: date, end: date) -> Iterator[date]:
    # start is never before start_date, so the offset is non-negative
    offset = (start - schedule.start_date).days
    candidate = start + timedelta(days=(-offset) % 7)
    while candidate <= end:
        yield candidate
        candidate += timedelta(weeks=1)


def occurrences_in_window(
    schedule: Schedule, window_start: Optional[date], window_end: Optional[date]
) -> list[date]:
    """Project a recurring schedule onto an inclusive window.

    The window is intersected with the schedule's own start/end dates.
    Monthly and yearly anchors that do not exist in a target month snap to
    that month's last day. Callers filter on ``is_active`` themselves.
    """
    if window_start is None or window_end is None:
        raise InvalidPeriod("Occurrence window must be bounded")
    if window_end < window_start:
        raise InvalidPeriod(f"Window end {window_end} is before start {window_start}")

    effective = _effective_window(schedule, window_start, window_end)
    if effective is None:
        return []
    start, end = effective

    frequency = Frequency(schedule.frequency)
    if frequency == Frequency.daily:
        return list(iter_dates(start, end))
    if frequency == Frequency.weekly:
        return list(_weekly(schedule, start, end))
    if frequency == Frequency.monthly:
        return list(_monthly(schedule, start, end))
    return list(_yearly(schedule, start, end))


def next_occurrence(
    schedule: Schedule, on_or_after: date, horizon: date
) -> Optional[date]:
    if horizon < on_or_after:
        return None
    found = occurrences_in_window(schedule, on_or_after, horizon)
    return found[0] if found else None
