from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from models import BudgetPeriod, utcnow


@dataclass(frozen=True)
class Period:
    slug: str
    start: datetime
    end: datetime


def month_start(moment: datetime) -> datetime:
    return datetime.combine(moment.date().replace(day=1), time.min)


def budget_window_start(
    period: BudgetPeriod, created_at: datetime, now: datetime
) -> datetime:
    """First instant whose expenses count against a budget.

    The window never reaches back past the budget's own creation, so spending
    recorded before the budget existed cannot push it over the limit.
    """
    if period == BudgetPeriod.monthly:
        start = month_start(now)
    else:
        start = now - timedelta(days=7)
    return max(start, created_at)


def resolve_period(period: Optional[str], *, now: Optional[datetime] = None) -> Period:
    now = now or utcnow()
    if period == "today":
        return Period("today", datetime.combine(now.date(), time.min), now)
    if period == "week":
        return Period("week", now - timedelta(days=7), now)
    if not period or period == "month":
        return Period("month", month_start(now), now)
    raise ValueError("Period must be one of: today, week, month")


def resolve_range(start: Optional[str], end: Optional[str]) -> Period:
    if not start or not end:
        raise ValueError("Both start and end dates are required")
    start_date = date.fromisoformat(start)
    end_date = date.fromisoformat(end)
    if start_date > end_date:
        raise ValueError("Start date must be before end date")
    return Period(
        "custom",
        datetime.combine(start_date, time.min),
        datetime.combine(end_date, time.max),
    )
