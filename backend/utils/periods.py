"""Reporting periods for dashboard metrics.

A timespan key resolves to a half-open ``[start, end)`` window ending now.
The comparison window has the same length and ends where the current one
starts.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

TIMESPANS = ("last7days", "last30days", "mtd", "qtd", "ytd", "ltd")
DEFAULT_TIMESPAN = "last30days"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Period:
    start: datetime
    end: datetime

    def previous(self) -> "Period":
        length = self.end - self.start
        return Period(start=self.start - length, end=self.start)

    def as_query(self) -> dict:
        return {"$gte": self.start, "$lt": self.end}


def normalize_timespan(timespan: Optional[str]) -> str:
    """The timespan key actually used; unknown or missing keys become the default."""
    return timespan if timespan in TIMESPANS else DEFAULT_TIMESPAN


def resolve_period(timespan: Optional[str], now: Optional[datetime] = None) -> Period:
    """Map a timespan key to its window. Unknown keys fall back to the last 30 days."""
    now = now or datetime.now(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if timespan == "last7days":
        start = now - timedelta(days=7)
    elif timespan == "mtd":
        start = midnight.replace(day=1)
    elif timespan == "qtd":
        quarter_month = 3 * ((now.month - 1) // 3) + 1
        start = midnight.replace(month=quarter_month, day=1)
    elif timespan == "ytd":
        start = midnight.replace(month=1, day=1)
    elif timespan == "ltd":
        start = EPOCH
    else:
        start = now - timedelta(days=30)

    return Period(start=start, end=now)


def percentage_change(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    if month == 12:
        days_in_month = 31
    else:
        days_in_month = (datetime(year, month + 1, 1) - timedelta(days=1)).day
    return value.replace(year=year, month=month, day=min(value.day, days_in_month))


def first_of_next_month(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return add_months(now.replace(day=1, hour=0, minute=0, second=0, microsecond=0), 1)


def as_utc(value: datetime) -> datetime:
    """Mongo returns naive UTC datetimes unless the client is tz_aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
