"""
Date range batching helpers
"""
import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar date window"""

    since: date
    until: date

    def __post_init__(self):
        if self.since > self.until:
            raise ValueError(f"since ({self.since}) is after until ({self.until})")

    @property
    def days(self) -> int:
        return (self.until - self.since).days + 1

    def as_params(self) -> dict:
        return {"since": self.since.isoformat(), "until": self.until.isoformat()}

    def __str__(self) -> str:
        return f"{self.since.isoformat()} to {self.until.isoformat()}"


def generate_date_batches(since: date, until: date, batch_size_days: int) -> List[DateRange]:
    """
    Split [since, until] into contiguous windows of batch_size_days.

    The last window may be shorter. since > until yields an empty list.
    """
    if batch_size_days < 1:
        raise ValueError("batch_size_days must be >= 1")

    batches: List[DateRange] = []
    current = since
    while current <= until:
        end = min(current + timedelta(days=batch_size_days - 1), until)
        batches.append(DateRange(current, end))
        current = end + timedelta(days=1)
    return batches


def month_date_range(year: int, month: int) -> DateRange:
    """First to last day of a calendar month"""
    last_day = calendar.monthrange(year, month)[1]
    return DateRange(date(year, month, 1), date(year, month, last_day))


def next_month(year: int, month: int, today: date) -> Optional[Tuple[int, int]]:
    """
    Month following (year, month), or None once it would pass today's month.
    """
    following = date(year, month, 1) + relativedelta(months=1)
    if (following.year, following.month) > (today.year, today.month):
        return None
    return following.year, following.month


def iter_months(start_year: int, start_month: int, today: date) -> List[Tuple[int, int]]:
    """All (year, month) pairs from the start month through today's month"""
    months: List[Tuple[int, int]] = []
    cursor: Optional[Tuple[int, int]] = (start_year, start_month)
    if cursor > (today.year, today.month):
        return months
    while cursor is not None:
        months.append(cursor)
        cursor = next_month(cursor[0], cursor[1], today)
    return months
