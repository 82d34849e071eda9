"""
Time Bucketer: partitions a time range into calendar-aligned windows.

Boundaries are computed as start + k * unit from the range start, using
calendar arithmetic for month-based units (a month after Jan 31 is the
last day of February, and two months after Jan 31 is Mar 31). The final
boundary is always the range end, so the last window may be short.
"""

import calendar
from datetime import datetime, timedelta
from typing import Iterator, NamedTuple, Optional

from dashcore.models.enums import TimeGranularity

_FIXED_UNITS = {
    TimeGranularity.MINUTE: timedelta(minutes=1),
    TimeGranularity.HOUR: timedelta(hours=1),
    TimeGranularity.DAY: timedelta(days=1),
    TimeGranularity.WEEK: timedelta(weeks=1),
}

_MONTH_UNITS = {
    TimeGranularity.MONTH: 1,
    TimeGranularity.QUARTER: 3,
    TimeGranularity.YEAR: 12,
}


class TimeWindow(NamedTuple):
    """Half-open [start, end) window. Degenerate when start == end."""

    start: datetime
    end: datetime

    @property
    def is_degenerate(self) -> bool:
        return self.start == self.end


def add_months(instant: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""
    total = instant.month - 1 + months
    year = instant.year + total // 12
    month = total % 12 + 1
    day = min(instant.day, calendar.monthrange(year, month)[1])
    return instant.replace(year=year, month=month, day=day)


def shift(instant: datetime, granularity: TimeGranularity, n: int = 1) -> datetime:
    """
    Move an instant by n units of a granularity (n may be negative).

    Raises:
        ValueError: For CUSTOM, which has no intrinsic unit
    """
    granularity = TimeGranularity(granularity)
    if granularity in _FIXED_UNITS:
        return instant + _FIXED_UNITS[granularity] * n
    if granularity in _MONTH_UNITS:
        return add_months(instant, _MONTH_UNITS[granularity] * n)
    raise ValueError(f"Granularity {granularity.value} has no calendar unit")


def floor_to_granularity(instant: datetime, granularity: TimeGranularity) -> datetime:
    """
    Truncate an instant to the start of its calendar bucket.

    Weeks start on Monday; quarters start in January, April, July and October.
    """
    granularity = TimeGranularity(granularity)
    if granularity == TimeGranularity.MINUTE:
        return instant.replace(second=0, microsecond=0)
    if granularity == TimeGranularity.HOUR:
        return instant.replace(minute=0, second=0, microsecond=0)

    midnight = instant.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity == TimeGranularity.DAY:
        return midnight
    if granularity == TimeGranularity.WEEK:
        return midnight - timedelta(days=midnight.weekday())
    if granularity == TimeGranularity.MONTH:
        return midnight.replace(day=1)
    if granularity == TimeGranularity.QUARTER:
        return midnight.replace(month=(midnight.month - 1) // 3 * 3 + 1, day=1)
    if granularity == TimeGranularity.YEAR:
        return midnight.replace(month=1, day=1)
    raise ValueError(f"Granularity {granularity.value} has no calendar boundary")


def previous_period(now: datetime, granularity: TimeGranularity) -> TimeWindow:
    """The most recent complete calendar period before `now`."""
    end = floor_to_granularity(now, granularity)
    return TimeWindow(shift(end, granularity, -1), end)


class WindowSequence:
    """
    Lazy, finite, restartable sequence of windows over [start, end].

    Iterating twice yields the same windows; nothing is materialized up front.
    """

    def __init__(
        self,
        start: datetime,
        end: datetime,
        granularity: TimeGranularity,
        step: Optional[timedelta] = None,
    ):
        if start > end:
            raise ValueError(f"start {start.isoformat()} is after end {end.isoformat()}")
        granularity = TimeGranularity(granularity)
        if step is not None and step <= timedelta(0):
            raise ValueError("step must be positive")

        self.start = start
        self.end = end
        self.granularity = granularity
        self.step = step

    def _boundary(self, k: int) -> datetime:
        if self.granularity == TimeGranularity.CUSTOM:
            return self.start + self.step * k
        return shift(self.start, self.granularity, k)

    def __iter__(self) -> Iterator[TimeWindow]:
        if self.start == self.end:
            yield TimeWindow(self.start, self.end)
            return

        if self.granularity == TimeGranularity.CUSTOM and self.step is None:
            yield TimeWindow(self.start, self.end)
            return

        previous = self.start
        k = 1
        while True:
            boundary = self._boundary(k)
            if boundary >= self.end:
                yield TimeWindow(previous, self.end)
                return
            yield TimeWindow(previous, boundary)
            previous = boundary
            k += 1

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __repr__(self) -> str:
        return (
            f"WindowSequence(start={self.start.isoformat()}, end={self.end.isoformat()}, "
            f"granularity={self.granularity.value})"
        )


def generate_windows(
    start: datetime,
    end: datetime,
    granularity: TimeGranularity,
    step: Optional[timedelta] = None,
) -> WindowSequence:
    """
    Split [start, end] into consecutive windows of one granularity.

    Args:
        start: Range start (inclusive)
        end: Range end; always the last boundary
        granularity: Calendar unit of each window
        step: Window width for CUSTOM granularity (one window if omitted)

    Returns:
        Lazy sequence of TimeWindow. start == end yields one degenerate window.

    Raises:
        ValueError: If start is after end
    """
    return WindowSequence(start, end, granularity, step)
