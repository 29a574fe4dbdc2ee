"""
Time windows for dashboard comparisons and trailing performance figures.

All boundaries are naive local time; weeks start Monday 00:00.
Windows are half-open: start <= t < end.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from app.crm.constants import DASHBOARD_PERIODS
from app.crm.errors import ValidationFailed


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime

    def contains(self, ts: datetime | None) -> bool:
        return ts is not None and self.start <= ts < self.end


def _midnight(d: date) -> datetime:
    return datetime.combine(d, time.min)


def _shift_months(d: date, months: int) -> date:
    """Move a first-of-month date by whole months."""
    idx = d.year * 12 + (d.month - 1) + months
    return date(idx // 12, idx % 12 + 1, 1)


def week_start(now: datetime) -> datetime:
    return _midnight(now.date() - timedelta(days=now.weekday()))


def period_window(period: str, now: datetime) -> tuple[Window, Window]:
    """
    Return (current, previous) windows for a dashboard period.
    The previous window is the one directly before, of the same length
    (same calendar span for months and quarters).
    """
    monday = week_start(now)
    week = timedelta(days=7)

    if period == "current_week":
        # Week to date, compared with the same elapsed span of last week.
        return Window(monday, now), Window(monday - week, now - week)
    if period == "last_week":
        return Window(monday - week, monday), Window(monday - 2 * week, monday - week)
    if period == "last_two":
        return Window(monday - 2 * week, monday), Window(monday - 4 * week, monday - 2 * week)
    if period == "last_month":
        this_month = now.date().replace(day=1)
        last_month = _shift_months(this_month, -1)
        before = _shift_months(this_month, -2)
        return (
            Window(_midnight(last_month), _midnight(this_month)),
            Window(_midnight(before), _midnight(last_month)),
        )
    if period == "last_quarter":
        quarter_month = (now.month - 1) // 3 * 3 + 1
        this_quarter = date(now.year, quarter_month, 1)
        last_quarter = _shift_months(this_quarter, -3)
        before = _shift_months(this_quarter, -6)
        return (
            Window(_midnight(last_quarter), _midnight(this_quarter)),
            Window(_midnight(before), _midnight(last_quarter)),
        )
    raise ValidationFailed(f"period must be one of: {', '.join(DASHBOARD_PERIODS)}")


def trailing_days(days: int, now: datetime) -> Window:
    """Today so far plus the preceding `days - 1` whole days."""
    return Window(_midnight(now.date() - timedelta(days=days - 1)), now)
