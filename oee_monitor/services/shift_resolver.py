"""
OEE Monitor - Shift Resolver

This module maps wall-clock timestamps and production intervals onto the
plant's three fixed shifts. The Night shift wraps past midnight, so interval
attribution intersects the interval with every occurrence of every shift
window instead of looking only at the start timestamp.
"""

from dataclasses import dataclass
from datetime import datetime, date, time, timedelta
from typing import Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo
import structlog

from oee_monitor.config import settings
from oee_monitor.models.production import ShiftName
from oee_monitor.utils.exceptions import UndefinedShiftError, ConfigurationError

logger = structlog.get_logger()

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class ShiftWindow:
    """A named time-of-day window, in minutes since midnight."""
    name: ShiftName
    code: str
    start_minute: int
    end_minute: int

    @property
    def wraps_midnight(self) -> bool:
        return self.end_minute <= self.start_minute

    @property
    def duration_minutes(self) -> int:
        if self.wraps_midnight:
            return MINUTES_PER_DAY - self.start_minute + self.end_minute
        return self.end_minute - self.start_minute

    def contains(self, minute_of_day: int) -> bool:
        """Half-open membership test; the wrapping window matches on either side of midnight."""
        if self.wraps_midnight:
            return minute_of_day >= self.start_minute or minute_of_day < self.end_minute
        return self.start_minute <= minute_of_day < self.end_minute

    def occurrence(self, day: date) -> Tuple[datetime, datetime]:
        """The window instance that starts on ``day``."""
        start = datetime.combine(day, time(self.start_minute // 60, self.start_minute % 60))
        return start, start + timedelta(minutes=self.duration_minutes)

    def format_start(self) -> str:
        return f"{self.start_minute // 60:02d}:{self.start_minute % 60:02d}"

    def format_end(self) -> str:
        return f"{self.end_minute // 60:02d}:{self.end_minute % 60:02d}"


# Morning 05:40-13:50, Afternoon 13:50-22:08, Night 22:08-05:40
SHIFT_TABLE: Tuple[ShiftWindow, ...] = (
    ShiftWindow(ShiftName.MORNING, "A", 5 * 60 + 40, 13 * 60 + 50),
    ShiftWindow(ShiftName.AFTERNOON, "B", 13 * 60 + 50, 22 * 60 + 8),
    ShiftWindow(ShiftName.NIGHT, "C", 22 * 60 + 8, 5 * 60 + 40),
)


class ShiftResolver:
    """Resolve timestamps and intervals to shifts."""

    def __init__(self, timezone: Optional[str] = None, shifts: Sequence[ShiftWindow] = SHIFT_TABLE):
        tz_name = timezone or settings.SHIFT_TIMEZONE
        try:
            self.timezone = ZoneInfo(tz_name)
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"Unknown shift timezone: {tz_name}", {"original_error": str(e)})
        self.shifts = tuple(shifts)

    def to_local(self, timestamp: datetime) -> datetime:
        """Convert to naive plant-local wall clock; naive input is taken as local already."""
        if timestamp.tzinfo is None:
            return timestamp
        return timestamp.astimezone(self.timezone).replace(tzinfo=None)

    def shift_for_minute(self, minute_of_day: int) -> ShiftWindow:
        """Return the window covering ``minute_of_day``."""
        for window in self.shifts:
            if window.contains(minute_of_day):
                return window
        logger.error("Timestamp outside every shift window", minute_of_day=minute_of_day)
        raise UndefinedShiftError(minute_of_day)

    def resolve_timestamp(self, timestamp: datetime) -> ShiftName:
        local = self.to_local(timestamp)
        return self.shift_for_minute(local.hour * 60 + local.minute).name

    def overlap_minutes(self, start_time: datetime, end_time: datetime) -> Dict[ShiftName, float]:
        """
        Minutes of ``[start_time, end_time)`` spent inside each shift.

        Window occurrences are generated from the day before the interval
        starts, so an interval beginning at 02:00 sees the Night window that
        opened at 22:08 the previous evening.
        """
        start = self.to_local(start_time)
        end = self.to_local(end_time)
        overlaps: Dict[ShiftName, float] = {window.name: 0.0 for window in self.shifts}
        if end <= start:
            return overlaps

        day = start.date() - timedelta(days=1)
        while day <= end.date():
            for window in self.shifts:
                window_start, window_end = window.occurrence(day)
                latest_start = max(start, window_start)
                earliest_end = min(end, window_end)
                if earliest_end > latest_start:
                    overlaps[window.name] += (earliest_end - latest_start).total_seconds() / 60.0
            day += timedelta(days=1)

        return overlaps

    def resolve_interval(self, start_time: datetime, end_time: Optional[datetime]) -> ShiftName:
        """Shift with the greatest overlap; ties go to the start timestamp's shift."""
        start_shift = self.resolve_timestamp(start_time)
        if end_time is None or end_time <= start_time:
            return start_shift

        end_shift = self.resolve_timestamp(end_time - timedelta(microseconds=1))
        if end_shift == start_shift:
            return start_shift

        overlaps = self.overlap_minutes(start_time, end_time)
        best = max(overlaps.values())
        if overlaps.get(start_shift, 0.0) == best:
            return start_shift
        for window in self.shifts:
            if overlaps[window.name] == best:
                logger.debug(
                    "Interval attributed by overlap",
                    start_shift=start_shift,
                    resolved_shift=window.name,
                    overlap_minutes=best
                )
                return window.name
        return start_shift

    def resolve_shift(self, start_time: datetime, end_time: Optional[datetime] = None) -> ShiftName:
        """Resolve a single timestamp, or an interval when ``end_time`` is given."""
        if end_time is None:
            return self.resolve_timestamp(start_time)
        return self.resolve_interval(start_time, end_time)

    def get_shift_info(self, name: ShiftName) -> ShiftWindow:
        for window in self.shifts:
            if window.name == name:
                return window
        raise UndefinedShiftError(-1, {"shift": str(name)})

    def shift_for_code(self, code: str) -> ShiftWindow:
        for window in self.shifts:
            if window.code == code.upper():
                return window
        raise UndefinedShiftError(-1, {"shift_code": code})

    def list_shifts(self) -> List[ShiftWindow]:
        return list(self.shifts)


shift_resolver = ShiftResolver()


def resolve_shift(start_time: datetime, end_time: Optional[datetime] = None) -> ShiftName:
    """Resolve with the plant-configured resolver."""
    return shift_resolver.resolve_shift(start_time, end_time)
