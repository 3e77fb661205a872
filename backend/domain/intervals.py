"""Minute-granularity interval arithmetic.

Intervals are half-open ``[start, end)`` ranges of minutes since midnight.
Touching endpoints never overlap and zero-width ranges overlap nothing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from backend.domain.errors import ValidationError


TIME_PATTERN = re.compile(r"^([0-1]\d|2[0-3]):[0-5]\d$")
MINUTES_PER_DAY = 24 * 60


def parse_time(value: str) -> int:
    """Convert a strict 24-hour ``HH:MM`` string to minutes since midnight."""
    if not isinstance(value, str) or TIME_PATTERN.fullmatch(value) is None:
        raise ValidationError(f"Time must be in HH:MM format, got {value!r}")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_minutes(minutes: int) -> str:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValidationError(f"minutes must be within [0, {MINUTES_PER_DAY - 1}], got {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_boundary(minutes: int) -> str:
    """Format an interval end, which may sit exactly at midnight."""
    if minutes == MINUTES_PER_DAY:
        return "24:00"
    return format_minutes(minutes)


def has_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open overlap test; zero-width ranges overlap nothing."""
    if start_a >= end_a or start_b >= end_b:
        return False
    return start_a < end_b and start_b < end_a


@dataclass(frozen=True, order=True)
class TimeInterval:
    start_minutes: int
    end_minutes: int

    def __post_init__(self) -> None:
        if not 0 <= self.start_minutes < self.end_minutes <= MINUTES_PER_DAY:
            raise ValidationError(
                f"Invalid interval [{self.start_minutes}, {self.end_minutes}): start must be before end"
            )

    @classmethod
    def from_strings(cls, start_time: str, end_time: str) -> "TimeInterval":
        start = parse_time(start_time)
        end = parse_time(end_time)
        if end <= start:
            raise ValidationError("startTime must be before endTime")
        return cls(start, end)

    @property
    def duration(self) -> int:
        return self.end_minutes - self.start_minutes

    @property
    def start_time(self) -> str:
        return format_minutes(self.start_minutes)

    @property
    def end_time(self) -> str:
        return format_boundary(self.end_minutes)

    def overlaps(self, other: "TimeInterval") -> bool:
        return has_overlap(self.start_minutes, self.end_minutes, other.start_minutes, other.end_minutes)

    def contains(self, other: "TimeInterval") -> bool:
        return self.start_minutes <= other.start_minutes and other.end_minutes <= self.end_minutes

    def to_dict(self) -> dict[str, str]:
        return {"start_time": self.start_time, "end_time": self.end_time}


def normalize(intervals: Iterable[TimeInterval]) -> list[TimeInterval]:
    """Sort and merge overlapping or touching intervals."""
    merged: list[TimeInterval] = []
    for interval in sorted(intervals):
        if merged and interval.start_minutes <= merged[-1].end_minutes:
            last = merged[-1]
            if interval.end_minutes > last.end_minutes:
                merged[-1] = TimeInterval(last.start_minutes, interval.end_minutes)
            continue
        merged.append(interval)
    return merged


def _subtract_one(base: Sequence[TimeInterval], remove: TimeInterval) -> list[TimeInterval]:
    survivors: list[TimeInterval] = []
    for interval in base:
        if not interval.overlaps(remove):
            survivors.append(interval)
            continue
        if remove.start_minutes > interval.start_minutes:
            survivors.append(TimeInterval(interval.start_minutes, remove.start_minutes))
        if remove.end_minutes < interval.end_minutes:
            survivors.append(TimeInterval(remove.end_minutes, interval.end_minutes))
    return survivors


def subtract(base: Sequence[TimeInterval], remove: Sequence[TimeInterval]) -> list[TimeInterval]:
    """Return ``base`` minus every interval in ``remove``.

    Removals are applied one at a time; each pass splits partially covered
    intervals into the surviving pieces and drops fully covered ones. An empty
    ``remove`` returns ``base`` unchanged.
    """
    if not remove:
        return list(base)
    result = list(base)
    for interval in remove:
        result = normalize(_subtract_one(result, interval))
    return result


def fits_within(candidate: TimeInterval, windows: Iterable[TimeInterval]) -> bool:
    """Subset test: the candidate sits entirely inside one window."""
    return any(window.contains(candidate) for window in windows)
