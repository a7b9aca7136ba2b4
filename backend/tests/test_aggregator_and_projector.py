from datetime import datetime, timedelta, timezone

from efs.schemas import SessionRecord
from efs.utils.aggregator import aggregate_sessions, combine_sections, split_sections
from efs.utils.projector import parse_hhmm, project
from efs.utils.selection import SelectedSession


def rec(code="ENG101", class_no="01", weekday=0, start="09:00", end="10:30", room="KEC 301", name="English"):
    return SessionRecord(code=code, class_no=class_no, weekday=weekday, start_time=start,
                         end_time=end, room=room, name=name)


def test_aggregate_groups_by_class_in_first_seen_order():
    sessions = [
        rec(class_no="02", weekday=1),
        rec(class_no="01", weekday=0),
        rec(class_no="02", weekday=3),
        rec(code="MTH100", class_no="01"),
    ]
    groups = aggregate_sessions(sessions)
    assert [(g.course_code, g.class_no) for g in groups] == [("ENG101", "02"), ("ENG101", "01"), ("MTH100", "01")]
    assert [int(s.weekday) for s in groups[0].sessions] == [1, 3]
    assert sum(len(g.sessions) for g in groups) == len(sessions)


def test_blank_class_numbers_form_one_group():
    groups = aggregate_sessions([rec(class_no=None), rec(class_no="", weekday=2), rec(class_no=" ")])
    assert len(groups) == 1
    assert groups[0].class_no == ""
    assert len(groups[0].sessions) == 3


def test_combine_sections_merges_identical_meetings():
    groups = aggregate_sessions([
        rec(class_no="02", weekday=0),
        rec(class_no="01", weekday=0),
        rec(class_no="03", weekday=4),
    ])
    combined = combine_sections(groups)
    assert [g.class_no for g in combined] == ["01+02", "03"]
    assert combined[0].is_combined
    assert combined[0].original_sections == ("01", "02")
    assert all(s.class_no == "01+02" for s in combined[0].sessions)
    assert split_sections("01+02") == ("01", "02")
    assert split_sections("") == ("",)


def test_session_record_accepts_aliases_and_names():
    s = SessionRecord.model_validate({"code": "eng101", "classNo": "01", "weekday": "Wed",
                                      "startTime": " 09:00", "endTime": "10:00", "room": None})
    assert s.code == "ENG101"
    assert int(s.weekday) == 2
    assert s.start_time == "09:00"
    assert s.room == ""


def test_parse_hhmm():
    assert parse_hhmm("09:05") == (9, 5)
    assert parse_hhmm("aa:bb") is None
    assert parse_hhmm("24:00") is None
    assert parse_hhmm("0930") is None
    assert parse_hhmm(None) is None


def test_project_example_two_weeks_from_wednesday():
    tz = timezone(timedelta(hours=8))
    reference = datetime(2024, 1, 17, 13, 0, tzinfo=tz)  # Wednesday
    sel = SelectedSession.from_session(rec())
    events = project([sel], reference, weeks=2)
    assert len(events) == 2
    assert events[0].start == datetime(2024, 1, 15, 9, 0, tzinfo=tz)
    assert events[0].end == datetime(2024, 1, 15, 10, 30, tzinfo=tz)
    assert events[1].start - events[0].start == timedelta(days=7)
    assert events[0].id != events[1].id
    d = events[0].to_dict()
    assert d["title"] == "ENG101"
    assert d["backgroundColor"] == sel.color
    assert d["extendedProps"]["campus"] == "Kowloon East Campus"


def test_project_skips_malformed_and_is_idempotent():
    reference = datetime(2024, 1, 21, 8, 0)  # Sunday, still the week of Jan 15
    good = SelectedSession.from_session(rec(weekday=6))
    bad_time = SelectedSession.from_session(rec(class_no="02", start="aa:bb"))
    inverted = SelectedSession.from_session(rec(class_no="03", start="11:00", end="10:00"))
    first = project([good, bad_time, inverted], reference, weeks=3)
    second = project([good, bad_time, inverted], reference, weeks=3)
    assert first == second
    assert len(first) == 3
    assert first[0].start == datetime(2024, 1, 21, 9, 0)
    assert project([good], reference, weeks=0) == []
