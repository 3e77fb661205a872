"""Tests for minute-granularity interval arithmetic."""

from __future__ import annotations

import itertools

import pytest

from backend.domain.errors import ValidationError
from backend.domain.intervals import (
    TimeInterval,
    fits_within,
    format_minutes,
    has_overlap,
    normalize,
    parse_time,
    subtract,
)


def iv(start: str, end: str) -> TimeInterval:
    return TimeInterval.from_strings(start, end)


SAMPLE = [
    iv("08:00", "09:00"),
    iv("08:30", "10:00"),
    iv("09:00", "09:30"),
    iv("10:00", "12:00"),
    iv("00:00", "23:59"),
]


def test_overlap_is_symmetric() -> None:
    for first, second in itertools.product(SAMPLE, repeat=2):
        assert first.overlaps(second) == second.overlaps(first)


def test_interval_overlaps_itself() -> None:
    for interval in SAMPLE:
        assert interval.overlaps(interval)


def test_touching_endpoints_do_not_overlap() -> None:
    assert not iv("08:00", "09:00").overlaps(iv("09:00", "10:00"))
    assert not has_overlap(480, 540, 540, 600)


def test_zero_width_range_overlaps_nothing() -> None:
    assert not has_overlap(300, 300, 0, 600)
    assert not has_overlap(0, 600, 300, 300)


def test_subtract_nothing_returns_base() -> None:
    base = [iv("09:00", "12:00"), iv("13:00", "17:00")]
    assert subtract(base, []) == base


def test_subtract_base_from_itself_is_empty() -> None:
    base = [iv("09:00", "17:00")]
    assert subtract(base, base) == []


def test_subtract_splits_partially_covered_interval() -> None:
    result = subtract([iv("09:00", "17:00")], [iv("10:00", "11:00"), iv("14:00", "14:30")])
    assert [(item.start_time, item.end_time) for item in result] == [
        ("09:00", "10:00"),
        ("11:00", "14:00"),
        ("14:30", "17:00"),
    ]


def test_subtract_removal_beyond_bounds_is_noop_for_disjoint_base() -> None:
    base = [iv("09:00", "10:00")]
    assert subtract(base, [iv("18:00", "20:00")]) == base


def test_subtract_removal_covering_base_drops_it() -> None:
    assert subtract([iv("09:00", "10:00")], [iv("08:00", "11:00")]) == []


def test_subtract_order_does_not_change_result() -> None:
    base = [iv("08:00", "18:00")]
    removals = [iv("09:00", "10:00"), iv("09:30", "12:00"), iv("15:00", "16:00")]
    forward = subtract(base, removals)
    backward = subtract(base, list(reversed(removals)))
    assert forward == backward


def test_normalize_merges_overlapping_and_touching() -> None:
    merged = normalize([iv("10:00", "11:00"), iv("09:00", "10:00"), iv("10:30", "12:00")])
    assert merged == [iv("09:00", "12:00")]


def test_minutes_round_trip_is_lossless() -> None:
    for minutes in range(0, 1440):
        assert parse_time(format_minutes(minutes)) == minutes


@pytest.mark.parametrize("value", ["24:00", "9:00", "12:60", "ab:cd", "", "12:00:00"])
def test_parse_time_rejects_malformed_values(value: str) -> None:
    with pytest.raises(ValidationError):
        parse_time(value)


def test_from_strings_rejects_end_before_start() -> None:
    with pytest.raises(ValidationError):
        iv("10:00", "09:00")
    with pytest.raises(ValidationError):
        iv("10:00", "10:00")


def test_fits_within_is_a_subset_test() -> None:
    windows = [iv("09:00", "12:00"), iv("13:00", "17:00")]
    assert fits_within(iv("09:00", "10:00"), windows)
    assert fits_within(iv("13:00", "17:00"), windows)
    assert not fits_within(iv("11:30", "13:30"), windows)
