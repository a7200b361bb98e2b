# planner_api/common/dates.py
from __future__ import annotations

from datetime import datetime, date, timedelta
import calendar as pycal
from typing import Iterator


def parse_date(s) -> date | None:
    """
    Accepts:
      - date / datetime objects (returned as date)
      - 'YYYY-MM-DD'  (canonical)
      - 'DD-MM-YYYY'  (legacy support)
    """
    if s is None or s == "":
        return None
    if isinstance(s, datetime):
        return s.date()
    if isinstance(s, date):
        return s
    for f in ("%Y-%m-%d", "%d-%m-%Y"):
        try:
            return datetime.strptime(str(s), f).date()
        except ValueError:
            pass
    return None


def is_weekend(d: date) -> bool:
    return d.weekday() >= 5


def is_business_day(d: date) -> bool:
    return not is_weekend(d)


def business_days(start: date, end: date) -> Iterator[date]:
    """Mon-Fri dates in [start, end]; weekends are skipped, not yielded."""
    cur = start
    while cur <= end:
        if is_business_day(cur):
            yield cur
        cur += timedelta(days=1)


def next_business_day(d: date) -> date:
    while is_weekend(d):
        d += timedelta(days=1)
    return d


def week_start(d: date) -> date:
    return d - timedelta(days=d.weekday())


def month_bounds(year: int, month: int):
    last = pycal.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last)


def month_business_bounds(d: date):
    """First and last business day of d's calendar month."""
    first, last = month_bounds(d.year, d.month)
    first = next_business_day(first)
    while is_weekend(last):
        last -= timedelta(days=1)
    return first, last
