"""Calendar windows for ranking periods.

Weeks are ISO weeks starting on Monday, months are calendar months and the
historical period is everything up to the reference date. All boundaries
are local calendar dates, inclusive.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum


class RankingPeriod(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    HISTORICAL = "historical"


@dataclass(frozen=True)
class RankingWindow:
    period: RankingPeriod
    start: date | None  # None: unbounded (historical)
    end: date
    reference: date  # date the streak metric is evaluated on
    key: str

    def contains(self, day: date) -> bool:
        return (self.start is None or day >= self.start) and day <= self.end


def get_week_iso(d: date) -> str:
    """ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return d.strftime("%G-W%V")


def get_monday(d: date) -> date:
    """Monday of the ISO week containing d."""
    return d - timedelta(days=d.weekday())


def get_month_bounds(d: date) -> tuple[date, date]:
    """(first day, last day) of the calendar month containing d."""
    first = d.replace(day=1)
    next_first = (first + timedelta(days=32)).replace(day=1)
    return first, next_first - timedelta(days=1)


def window_for(period: RankingPeriod | str, as_of: date) -> RankingWindow:
    """Current window of ``period`` containing ``as_of``."""
    period = RankingPeriod(period)
    if period is RankingPeriod.WEEKLY:
        monday = get_monday(as_of)
        return RankingWindow(period, monday, monday + timedelta(days=6), as_of, get_week_iso(as_of))
    if period is RankingPeriod.MONTHLY:
        first, last = get_month_bounds(as_of)
        return RankingWindow(period, first, last, as_of, as_of.strftime("%Y-%m"))
    return RankingWindow(period, None, as_of, as_of, f"all:{as_of.isoformat()}")


def previous_window(window: RankingWindow) -> RankingWindow:
    """The immediately preceding comparable window.

    Weekly and monthly step back one calendar unit. Historical compares
    against cumulative values as of the end of the previous ISO week.
    """
    if window.period is RankingPeriod.WEEKLY:
        sunday = window.start - timedelta(days=1)  # type: ignore[operator]
        return RankingWindow(window.period, get_monday(sunday), sunday, sunday, get_week_iso(sunday))
    if window.period is RankingPeriod.MONTHLY:
        last = window.start - timedelta(days=1)  # type: ignore[operator]
        first, _ = get_month_bounds(last)
        return RankingWindow(window.period, first, last, last, last.strftime("%Y-%m"))
    sunday = get_monday(window.reference) - timedelta(days=1)
    return RankingWindow(window.period, None, sunday, sunday, f"all:{sunday.isoformat()}")
