from datetime import datetime, timedelta

import pytest

from efs.utils import weekdays
from efs.utils.colors import PALETTE, campus_for, color_for
from efs.utils.projector import week_anchor
from efs.utils.weekdays import Weekday


NATIVE_TO_CANONICAL = [(0, Weekday.SUNDAY), (1, Weekday.MONDAY), (2, Weekday.TUESDAY), (3, Weekday.WEDNESDAY),
                       (4, Weekday.THURSDAY), (5, Weekday.FRIDAY), (6, Weekday.SATURDAY)]


@pytest.mark.parametrize("native,day", NATIVE_TO_CANONICAL)
def test_native_round_trip(native, day):
    assert weekdays.from_native(native) == day
    assert weekdays.to_native(day) == native


@pytest.mark.parametrize("native,expected", [(0, -6), (1, 0), (2, -1), (3, -2), (4, -3), (5, -4), (6, -5)])
def test_monday_offset_for_every_day(native, expected):
    assert weekdays.monday_offset(native) == expected


def test_iso_and_names():
    for day in Weekday:
        assert weekdays.from_iso(weekdays.to_iso(day)) == day
        assert weekdays.from_name(weekdays.name_of(day)) == day
    assert weekdays.from_name("Thursday") == Weekday.THURSDAY
    assert weekdays.from_name("thurs.") == Weekday.THURSDAY
    assert weekdays.from_name("noday") is None
    with pytest.raises(ValueError):
        weekdays.from_iso(0)
    with pytest.raises(ValueError):
        weekdays.from_native(7)


def test_coerce_rejects_bad_values():
    assert weekdays.coerce("3") == Weekday.THURSDAY
    assert weekdays.coerce("mon") == Weekday.MONDAY
    for bad in (7, -1, True, "someday", 1.5, None):
        with pytest.raises(ValueError):
            weekdays.coerce(bad)


def test_week_anchor_is_monday_at_most_six_days_back():
    start = datetime(2024, 1, 14, 15, 30)  # a Sunday
    for i in range(8):
        ref = start + timedelta(days=i)
        anchor = week_anchor(ref)
        assert anchor.weekday() == Weekday.MONDAY
        assert timedelta(0) <= ref - anchor < timedelta(days=7)
        assert (anchor.hour, anchor.minute) == (0, 0)
    assert week_anchor(datetime(2024, 1, 21, 23, 59)).date() == datetime(2024, 1, 15).date()


def test_color_for_is_stable_and_in_palette():
    assert color_for("A") == PALETTE[1]
    assert color_for("AB") == PALETTE[1]
    assert color_for("ENG101") == color_for("ENG101")
    for code in ("ENG101", "MTH2203", "X" * 40, ""):
        assert color_for(code) in PALETTE


def test_campus_for_room_prefix():
    assert campus_for("KEC 301") == "Kowloon East Campus"
    assert campus_for("adc201") == "Admiralty Learning Centre"
    assert campus_for("Online") == "Online"
    assert campus_for("") == ""
