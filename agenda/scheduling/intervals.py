"""Time-of-day interval helpers.

Times are normalized to integer minutes since midnight before any comparison, so
``"9:00"``, ``"09:00"`` and ``"09:00:00"`` all compare equal. Ranges are half-open:
``[start, end)`` never includes ``end``, which lets back-to-back ranges touch
without overlapping.
"""

import re
from dataclasses import dataclass
from datetime import date, time

from agenda.core.errors import ScheduleValidationError

MINUTES_PER_DAY = 24 * 60

_TIME_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?$')


def to_minutes(value: time | str) -> int:
    """Return minutes since midnight for a ``time`` or an ``HH:MM[:SS]`` string.

    Seconds are dropped; the booking grid never goes below whole minutes.
    """
    if isinstance(value, time):
        return value.hour * 60 + value.minute

    if not isinstance(value, str):
        raise ScheduleValidationError(f'Unsupported time value: {value!r}')

    match = _TIME_PATTERN.match(value.strip())
    if not match:
        raise ScheduleValidationError(f'Time must be formatted as HH:MM or HH:MM:SS, got {value!r}.')

    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ScheduleValidationError(f'Time out of range: {value!r}.')

    return hours * 60 + minutes


def from_minutes(minutes: int) -> time:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ScheduleValidationError(f'{minutes} minutes is outside a single day.')
    return time(minutes // 60, minutes % 60)


def format_minutes(minutes: int) -> str:
    return f'{minutes // 60:02d}:{minutes % 60:02d}'


def weekday_index(day: date) -> int:
    """Weekday numbered the way working hours are stored: 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


@dataclass(frozen=True)
class TimeRange:
    """Half-open ``[start, end)`` range in minutes since midnight."""

    start: int
    end: int

    @classmethod
    def from_times(cls, start: time | str, end: time | str) -> 'TimeRange':
        return cls(to_minutes(start), to_minutes(end))

    @property
    def duration(self) -> int:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def overlaps(self, other: 'TimeRange') -> bool:
        # An empty range occupies no time, so it never overlaps anything.
        if self.is_empty or other.is_empty:
            return False
        return self.start < other.end and self.end > other.start

    def contains(self, other: 'TimeRange') -> bool:
        return self.start <= other.start and other.end <= self.end

    def start_time(self) -> time:
        return from_minutes(self.start)

    def end_time(self) -> time:
        return from_minutes(self.end)

    def __str__(self) -> str:
        return f'{format_minutes(self.start)}-{format_minutes(self.end)}'


def overlaps_any(candidate: TimeRange, occupied: list[TimeRange]) -> bool:
    return any(candidate.overlaps(busy) for busy in occupied)


def iterate_candidate_ranges(window: TimeRange, duration_minutes: int, stride_minutes: int):
    """Yield ``duration_minutes`` long ranges inside ``window``, one every ``stride_minutes``."""
    if duration_minutes <= 0:
        raise ScheduleValidationError('Duration must be a positive number of minutes.')
    if stride_minutes <= 0:
        raise ScheduleValidationError('Slot granularity must be a positive number of minutes.')

    current = window.start
    while current + duration_minutes <= window.end:
        yield TimeRange(current, current + duration_minutes)
        current += stride_minutes
