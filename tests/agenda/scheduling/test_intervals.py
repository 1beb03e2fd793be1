from datetime import date, time

import pytest

from agenda.core.errors import ScheduleValidationError
from agenda.scheduling.intervals import (
    TimeRange,
    format_minutes,
    from_minutes,
    iterate_candidate_ranges,
    overlaps_any,
    to_minutes,
    weekday_index,
)


@pytest.mark.parametrize(
    ('value', 'expected'),
    [
        ('09:00', 540),
        ('9:00', 540),
        ('09:00:00', 540),
        ('23:59:59', 1439),
        (time(14, 30), 870),
        (' 10:15 ', 615),
    ],
)
def test_to_minutes_normalizes_time_shapes(value, expected: int) -> None:
    assert to_minutes(value) == expected


@pytest.mark.parametrize('value', ['24:00', '10:60', '10', 'ten o clock', '10:00:61', 600])
def test_to_minutes_rejects_malformed_values(value) -> None:
    with pytest.raises(ScheduleValidationError):
        to_minutes(value)


def test_from_minutes_and_format_minutes() -> None:
    assert from_minutes(0) == time(0, 0)
    assert from_minutes(555) == time(9, 15)
    assert format_minutes(555) == '09:15'

    with pytest.raises(ScheduleValidationError):
        from_minutes(24 * 60)


@pytest.mark.parametrize(
    ('day', 'expected'),
    [
        (date(2025, 12, 28), 0),
        (date(2025, 12, 22), 1),
        (date(2025, 12, 25), 4),
        (date(2025, 12, 27), 6),
    ],
)
def test_weekday_index_counts_from_sunday(day: date, expected: int) -> None:
    assert weekday_index(day) == expected


def test_back_to_back_ranges_do_not_overlap() -> None:
    morning = TimeRange.from_times('09:00', '10:00')
    next_one = TimeRange.from_times('10:00', '11:00')

    assert not morning.overlaps(next_one)
    assert not next_one.overlaps(morning)


def test_zero_length_range_never_overlaps() -> None:
    point = TimeRange.from_times('10:00', '10:00')

    assert not point.overlaps(TimeRange.from_times('09:00', '11:00'))


def test_overlap_and_containment() -> None:
    window = TimeRange.from_times('09:00', '12:00')
    inner = TimeRange.from_times('10:00', '11:00')
    straddling = TimeRange.from_times('11:30', '12:30')

    assert window.overlaps(inner)
    assert window.contains(inner)
    assert window.overlaps(straddling)
    assert not window.contains(straddling)
    assert overlaps_any(straddling, [inner, window])
    assert not overlaps_any(straddling, [inner])
    assert str(straddling) == '11:30-12:30'


def test_iterate_candidate_ranges_includes_last_fitting_start() -> None:
    window = TimeRange.from_times('09:00', '12:00')

    candidates = [str(candidate) for candidate in iterate_candidate_ranges(window, 60, 30)]

    assert candidates == ['09:00-10:00', '09:30-10:30', '10:00-11:00', '10:30-11:30', '11:00-12:00']


def test_iterate_candidate_ranges_is_empty_when_duration_exceeds_window() -> None:
    window = TimeRange.from_times('09:00', '10:00')

    assert list(iterate_candidate_ranges(window, 90, 30)) == []


@pytest.mark.parametrize(('duration', 'stride'), [(0, 30), (-15, 30), (30, 0)])
def test_iterate_candidate_ranges_rejects_non_positive_sizes(duration: int, stride: int) -> None:
    window = TimeRange.from_times('09:00', '10:00')

    with pytest.raises(ScheduleValidationError):
        list(iterate_candidate_ranges(window, duration, stride))
