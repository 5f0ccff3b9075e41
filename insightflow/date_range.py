"""
Date range presets and their resolution to concrete [start, end] instants.

All arithmetic happens in the timezone of the supplied ``now`` (local wall
clock when ``now`` is naive). Weeks start on Monday. Day-based ranges end
one millisecond before the next midnight.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import NamedTuple, Optional, Tuple

END_OF_DAY_OFFSET = timedelta(days=1) - timedelta(milliseconds=1)
ONE_TICK = timedelta(milliseconds=1)

HOUR_UNIT_MAX_DAYS = 1
DAY_UNIT_MAX_DAYS = 90


class DateRangePreset(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "week"
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    THIS_MONTH = "month"
    LAST_MONTH = "last_month"
    THIS_YEAR = "year"
    LAST_YEAR = "last_year"
    CUSTOM = "custom"


class TimeUnit(str, Enum):
    HOUR = "hour"
    DAY = "day"
    MONTH = "month"


class ResolvedRange(NamedTuple):
    start: datetime
    end: datetime
    unit: TimeUnit


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def unit_for_span(start: datetime, end: datetime) -> TimeUnit:
    """Chart bucket width for a span, counted in whole days. Thresholds are inclusive."""
    days = (end - start).days
    if days <= HOUR_UNIT_MAX_DAYS:
        return TimeUnit.HOUR
    if days <= DAY_UNIT_MAX_DAYS:
        return TimeUnit.DAY
    return TimeUnit.MONTH


def _preset_bounds(preset: DateRangePreset, now: datetime) -> Tuple[datetime, datetime]:
    today = start_of_day(now)
    end_of_today = today + END_OF_DAY_OFFSET

    if preset == DateRangePreset.TODAY:
        return today, end_of_today
    if preset == DateRangePreset.YESTERDAY:
        yesterday = today - timedelta(days=1)
        return yesterday, yesterday + END_OF_DAY_OFFSET
    if preset == DateRangePreset.THIS_WEEK:
        return today - timedelta(days=today.weekday()), end_of_today
    if preset == DateRangePreset.LAST_7_DAYS:
        return today - timedelta(days=6), end_of_today
    if preset == DateRangePreset.LAST_30_DAYS:
        return today - timedelta(days=29), end_of_today
    if preset == DateRangePreset.THIS_MONTH:
        return today.replace(day=1), end_of_today
    if preset == DateRangePreset.LAST_MONTH:
        start_of_this_month = today.replace(day=1)
        end_of_last_month = start_of_this_month - ONE_TICK
        return start_of_day(end_of_last_month).replace(day=1), end_of_last_month
    if preset == DateRangePreset.THIS_YEAR:
        return today.replace(month=1, day=1), end_of_today
    if preset == DateRangePreset.LAST_YEAR:
        start = today.replace(year=today.year - 1, month=1, day=1)
        return start, today.replace(month=1, day=1) - ONE_TICK
    raise ValueError(f"Preset {preset.value!r} has no implicit bounds")


def resolve(preset: DateRangePreset, now: datetime) -> ResolvedRange:
    """Map a (non-custom) preset and a reference instant to start, end and unit."""
    start, end = _preset_bounds(DateRangePreset(preset), now)
    return ResolvedRange(start, end, unit_for_span(start, end))


@dataclass(frozen=True)
class DateRange:
    preset: DateRangePreset
    custom_start: Optional[datetime] = None
    custom_end: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.preset == DateRangePreset.CUSTOM:
            if self.custom_start is None or self.custom_end is None:
                raise ValueError("Custom date ranges need both a start and an end")
            if self.custom_start > self.custom_end:
                raise ValueError("Custom date range start must not be after its end")

    @classmethod
    def custom(cls, start: datetime, end: datetime) -> "DateRange":
        return cls(DateRangePreset.CUSTOM, start, end)

    @property
    def id(self) -> str:
        """Stable identifier used in cache keys."""
        if self.preset == DateRangePreset.CUSTOM:
            return f"custom-{int(self.custom_start.timestamp())}-{int(self.custom_end.timestamp())}"
        return self.preset.value

    def resolve(self, now: Optional[datetime] = None) -> ResolvedRange:
        if self.preset == DateRangePreset.CUSTOM:
            return ResolvedRange(
                self.custom_start,
                self.custom_end,
                unit_for_span(self.custom_start, self.custom_end),
            )
        return resolve(self.preset, now or datetime.now())

    def dates(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        resolved = self.resolve(now)
        return resolved.start, resolved.end

    def unit(self, now: Optional[datetime] = None) -> TimeUnit:
        return self.resolve(now).unit

    def previous_period(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        """Same-length period ending right before this one starts."""
        start, end = self.dates(now)
        previous_end = start - ONE_TICK
        return previous_end - (end - start), previous_end


TODAY = DateRange(DateRangePreset.TODAY)
YESTERDAY = DateRange(DateRangePreset.YESTERDAY)
THIS_WEEK = DateRange(DateRangePreset.THIS_WEEK)
LAST_7_DAYS = DateRange(DateRangePreset.LAST_7_DAYS)
LAST_30_DAYS = DateRange(DateRangePreset.LAST_30_DAYS)
THIS_MONTH = DateRange(DateRangePreset.THIS_MONTH)
LAST_MONTH = DateRange(DateRangePreset.LAST_MONTH)
THIS_YEAR = DateRange(DateRangePreset.THIS_YEAR)
LAST_YEAR = DateRange(DateRangePreset.LAST_YEAR)

DEFAULT_RANGE = THIS_WEEK
