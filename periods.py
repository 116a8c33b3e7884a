from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

MAX_WINDOW_DAYS = 366


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date  # inclusive


def _month_bounds(day: date) -> tuple[date, date]:
    first = day.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return first, next_month - date.resolution


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if not period or period == "this_month":
        first, last = _month_bounds(today)
        return Period("this_month", first, last)
    if period == "last_month":
        first_this = today.replace(day=1)
        first, last = _month_bounds(first_this - date.resolution)
        return Period("last_month", first, last)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        if end_date - start_date >= timedelta(days=MAX_WINDOW_DAYS):
            raise ValueError(f"Custom period must not exceed {MAX_WINDOW_DAYS} days")
        return Period("custom", start_date, end_date)
    raise ValueError(f"Unknown period: {period}")
