"""Aggregation windows for goal periods. Pure, never raises."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone

from corex.tracker.models import END_OF_DAY, GoalPeriod

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class Window:
    """Inclusive [start, end] interval."""

    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        # Naive instants are read in the window's timezone
        if instant.tzinfo is None and self.end.tzinfo is not None:
            instant = instant.replace(tzinfo=self.end.tzinfo)
        elif instant.tzinfo is not None and self.end.tzinfo is None:
            instant = instant.replace(tzinfo=None)
        return self.start <= instant <= self.end


def _day_start(d: datetime) -> datetime:
    return datetime.combine(d.date(), time.min, tzinfo=d.tzinfo)


def _day_end(d: datetime) -> datetime:
    return datetime.combine(d.date(), END_OF_DAY, tzinfo=d.tzinfo)


def resolve_window(period: GoalPeriod | str, now: datetime, week_start: int = 6) -> Window:
    """Window for `period` around `now`, in `now`'s timezone.

    week_start uses Python weekday numbering (Monday=0 … Sunday=6).
    Unknown periods fall back to the total window.
    """
    try:
        period = GoalPeriod(period)
    except ValueError:
        period = GoalPeriod.total

    if period == GoalPeriod.daily:
        return Window(_day_start(now), _day_end(now))

    if period == GoalPeriod.weekly:
        days_back = (now.weekday() - week_start) % 7
        start = _day_start(now - timedelta(days=days_back))
        return Window(start, _day_end(start + timedelta(days=6)))

    if period == GoalPeriod.monthly:
        last_day = calendar.monthrange(now.year, now.month)[1]
        return Window(_day_start(now.replace(day=1)), _day_end(now.replace(day=last_day)))

    epoch = EPOCH if now.tzinfo is not None else EPOCH.replace(tzinfo=None)
    return Window(epoch, _day_end(now))
