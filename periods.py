from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional


@dataclass(frozen=True)
class Period:
    """Half-open date window: ``start <= d < end``."""

    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value < self.end


def first_of_next_month(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1)
    return date(year, month + 1, 1)


def month_window(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    return Period("month", date(year, month, 1), first_of_next_month(year, month))


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    tomorrow = today + timedelta(days=1)
    if not period or period == "all":
        return Period("all", date(1970, 1, 1), tomorrow)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        return Period("last_month", last_month_end.replace(day=1), first_this)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        # Inclusive end date from the caller becomes an exclusive bound.
        return Period("custom", start_date, end_date + timedelta(days=1))
    if period != "this_month":
        raise ValueError(f"Unknown period: {period}")

    window = month_window(today.year, today.month)
    return Period("this_month", window.start, window.end)
