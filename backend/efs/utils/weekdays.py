"""Canonical weekday encoding and conversions to external formats.

Internally every weekday is a `Weekday` value with Monday=0 .. Sunday=6,
the same numbering as `datetime.date.weekday()`. Other encodings only
appear at the edges and are converted with the functions below:

- ISO numbering, Monday=1 .. Sunday=7 (`from_iso` / `to_iso`)
- native calendar numbering used by browser front ends, Sunday=0 ..
  Saturday=6 (`from_native` / `to_native`)
- English day names, short or long (`from_name` / `name_of`)
"""

from __future__ import annotations

from enum import IntEnum
from typing import Optional


class Weekday(IntEnum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


SHORT_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

_NAME_LOOKUP = {}
for _day in Weekday:
    _NAME_LOOKUP[SHORT_NAMES[_day].lower()] = _day
    _NAME_LOOKUP[_day.name.lower()] = _day
# common alternative abbreviations
_NAME_LOOKUP.update({"tues": Weekday.TUESDAY, "weds": Weekday.WEDNESDAY, "thur": Weekday.THURSDAY, "thurs": Weekday.THURSDAY})


def from_iso(value: int) -> Weekday:
    if not 1 <= int(value) <= 7:
        raise ValueError(f"ISO weekday must be 1..7, got {value}")
    return Weekday(int(value) - 1)


def to_iso(day: Weekday) -> int:
    return int(day) + 1


def from_native(value: int) -> Weekday:
    """Convert a Sunday=0 .. Saturday=6 weekday into the canonical enum."""
    if not 0 <= int(value) <= 6:
        raise ValueError(f"native weekday must be 0..6, got {value}")
    return Weekday((int(value) + 6) % 7)


def to_native(day: Weekday) -> int:
    return (int(day) + 1) % 7


def from_name(text: Optional[str]) -> Optional[Weekday]:
    if not text:
        return None
    return _NAME_LOOKUP.get(text.strip().rstrip(".").lower())


def name_of(day: Weekday) -> str:
    return SHORT_NAMES[int(day)]


def monday_offset(native: int) -> int:
    """Days to add to a date with native weekday `native` to reach its Monday.

    Sunday (0) belongs to the week that started six days earlier.
    """
    return -6 if native == 0 else 1 - native


def coerce(value) -> Weekday:
    """Accept a canonical int, a `Weekday` or a day name."""
    if isinstance(value, Weekday):
        return value
    if isinstance(value, bool):
        raise ValueError("weekday must be an int or a day name")
    if isinstance(value, int):
        if not 0 <= value <= 6:
            raise ValueError(f"weekday must be 0..6 (Monday=0), got {value}")
        return Weekday(value)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return coerce(int(stripped))
        day = from_name(stripped)
        if day is None:
            raise ValueError(f"unknown weekday name: {value!r}")
        return day
    raise ValueError(f"weekday must be an int or a day name, got {type(value).__name__}")
