"""Project weekly selections onto dated calendar events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple

from . import weekdays
from .colors import color_for

logger = logging.getLogger("efs.timetable")

TEXT_COLOR = "#ffffff"


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    title: str
    start: datetime
    end: datetime
    color: str
    full_title: str = ""
    room: str = ""
    class_no: str = ""
    campus: str = ""
    text_color: str = TEXT_COLOR

    def to_dict(self) -> dict:
        """Shape consumed by the calendar grid on the front end."""
        return {
            "id": self.id,
            "title": self.title,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "backgroundColor": self.color,
            "textColor": self.text_color,
            "extendedProps": {
                "fullTitle": self.full_title,
                "room": self.room,
                "classNo": self.class_no,
                "campus": self.campus,
            },
        }


def parse_hhmm(value) -> Optional[Tuple[int, int]]:
    """Parse `HH:MM` into `(hour, minute)`; `None` when malformed."""
    if not isinstance(value, str) or ":" not in value:
        return None
    hour_s, _, minute_s = value.strip().partition(":")
    try:
        hour, minute = int(hour_s), int(minute_s[:2])
    except ValueError:
        return None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def week_anchor(reference: datetime) -> datetime:
    """Midnight of the Monday on or before `reference`, in its own tzinfo."""
    native = weekdays.to_native(weekdays.Weekday(reference.weekday()))
    monday = reference.date() + timedelta(days=weekdays.monday_offset(native))
    return datetime.combine(monday, time(0, 0), tzinfo=reference.tzinfo)


def _event_id(code: str, class_no: str, week: int, weekday: int, start: str) -> str:
    return f"{code}-{class_no}-w{week}-d{weekday}-{start.replace(':', '')}"


def project(selections: Iterable, reference: datetime, weeks: int = 2) -> List[CalendarEvent]:
    """Materialise `weeks` weeks of events starting with the week of `reference`.

    `selections` are `SelectedSession`-like objects (`code`, `class_no`,
    `weekday`, `start_time`, `end_time`, `room`, `name`). Sessions with
    unparseable or inverted times are dropped. The result only depends on
    the arguments, so callers must take one snapshot of "now" per call.
    """
    anchor = week_anchor(reference)
    tz = reference.tzinfo
    events: List[CalendarEvent] = []
    for sel in selections:
        start = parse_hhmm(sel.start_time)
        end = parse_hhmm(sel.end_time)
        if start is None or end is None or end <= start:
            logger.debug("skipping session %s-%s with times %r-%r", sel.code, sel.class_no, sel.start_time, sel.end_time)
            continue
        try:
            day = weekdays.coerce(sel.weekday)
        except ValueError:
            logger.debug("skipping session %s-%s with weekday %r", sel.code, sel.class_no, sel.weekday)
            continue
        color = getattr(sel, "color", None) or color_for(sel.code)
        for week in range(weeks):
            event_date: date = anchor.date() + timedelta(days=7 * week + int(day))
            events.append(
                CalendarEvent(
                    id=_event_id(sel.code, sel.class_no, week, int(day), sel.start_time.strip()),
                    title=sel.code,
                    start=datetime.combine(event_date, time(*start), tzinfo=tz),
                    end=datetime.combine(event_date, time(*end), tzinfo=tz),
                    color=color,
                    full_title=getattr(sel, "name", "") or "",
                    room=getattr(sel, "room", "") or "",
                    class_no=sel.class_no or "",
                    campus=getattr(sel, "campus", "") or "",
                )
            )
    return events
