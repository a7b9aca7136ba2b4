"""The personal timetable: a user's chosen sessions and their persistence.

`SelectionStore` owns an ordered list of `SelectedSession` objects. Classes
are added and removed as a unit (every meeting of the class at once), and
the list can be exported to / imported from a JSON document. Persistence
goes through an injected `SelectionBackend`, so the same store works on a
local profile file or on the server database.

The store is not thread-safe; callers use one store per request or per
UI thread.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional

from ..schemas import SessionRecord
from . import weekdays
from .aggregator import ClassGroup, aggregate_sessions, split_sections
from .colors import campus_for, color_for

logger = logging.getLogger("efs.timetable")

STORAGE_KEY = "efs.timetable.selection"


class SelectionImportError(ValueError):
    """Raised when an imported timetable document has the wrong shape."""


def selection_id(code: str, class_no: str, weekday: int, start_time: str) -> str:
    return f"{code}-{class_no}-{int(weekday)}-{start_time}"


@dataclass
class SelectedSession:
    code: str
    class_no: str
    weekday: int
    start_time: str
    end_time: str
    room: str = ""
    name: str = ""
    campus: str = ""
    color: str = ""
    id: str = ""
    day: str = ""
    time: str = ""

    @classmethod
    def from_session(cls, s: SessionRecord) -> "SelectedSession":
        day = int(s.weekday)
        return cls(
            code=s.code,
            class_no=s.class_no,
            weekday=day,
            start_time=s.start_time,
            end_time=s.end_time,
            room=s.room,
            name=s.name,
            campus=campus_for(s.room),
            color=color_for(s.code),
            id=selection_id(s.code, s.class_no, day, s.start_time),
            day=weekdays.name_of(weekdays.Weekday(day)),
            time=f"{s.start_time}-{s.end_time}",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "classNo": self.class_no,
            "weekday": self.weekday,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "room": self.room,
            "name": self.name,
            "campus": self.campus,
            "color": self.color,
            "day": self.day,
            "time": self.time,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SelectedSession":
        """Restore a selection from its exported form.

        Field values are taken as they are; only the camelCase/snake_case
        key spelling is reconciled.
        """
        def pick(camel, snake, default=""):
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        return cls(
            code=data.get("code", ""),
            class_no=pick("classNo", "class_no"),
            weekday=data.get("weekday", 0),
            start_time=pick("startTime", "start_time"),
            end_time=pick("endTime", "end_time"),
            room=data.get("room", ""),
            name=data.get("name", ""),
            campus=data.get("campus", ""),
            color=data.get("color", ""),
            id=data.get("id", ""),
            day=data.get("day", ""),
            time=data.get("time", ""),
        )


@dataclass
class SelectionOutcome:
    changed: bool
    notices: List[str] = field(default_factory=list)


class SelectionBackend:
    """Durable slot holding one exported timetable document."""

    def read(self) -> Optional[str]:
        raise NotImplementedError

    def write(self, document: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class MemoryBackend(SelectionBackend):
    def __init__(self, document: Optional[str] = None):
        self.document = document

    def read(self) -> Optional[str]:
        return self.document

    def write(self, document: str) -> None:
        self.document = document

    def clear(self) -> None:
        self.document = None


class FileBackend(SelectionBackend):
    """Key-value JSON file; the timetable lives under one fixed key.

    Other keys in the same file are preserved, so a profile file can be
    shared with unrelated settings.
    """

    def __init__(self, path: Path, key: str = STORAGE_KEY):
        self.path = Path(path)
        self.key = key

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read timetable profile %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def read(self) -> Optional[str]:
        return self._load().get(self.key)

    def write(self, document: str) -> None:
        data = self._load()
        data[self.key] = document
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, ensure_ascii=True), encoding="utf-8")

    def clear(self) -> None:
        data = self._load()
        if data.pop(self.key, None) is not None:
            self.path.write_text(json.dumps(data, ensure_ascii=True), encoding="utf-8")


class SelectionStore:
    def __init__(
        self,
        lookup: Callable[[str], Iterable[SessionRecord]],
        backend: Optional[SelectionBackend] = None,
    ):
        self.lookup = lookup
        self.backend = backend if backend is not None else MemoryBackend()
        self._items: List[SelectedSession] = []

    def __iter__(self) -> Iterator[SelectedSession]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    @property
    def selections(self) -> List[SelectedSession]:
        return list(self._items)

    def find_class(self, code: str, class_no: str) -> Optional[ClassGroup]:
        code = (code or "").strip().upper()
        try:
            sessions = list(self.lookup(code) or [])
        except LookupError:
            return None
        for group in aggregate_sessions(sessions):
            if group.course_code == code and group.class_no == (class_no or ""):
                return group
        return None

    def _has_class(self, code: str, class_no: str) -> bool:
        return any(s.code == code and s.class_no == class_no for s in self._items)

    def is_selected(self, code: str, class_no: str) -> bool:
        """True when any selected class of `code` shares a section with `class_no`.

        A selected combined class `"01+02"` therefore answers for `"01"`,
        `"02"` and `"01+02"`.
        """
        code = (code or "").strip().upper()
        wanted = set(split_sections(class_no))
        return any(s.code == code and wanted & set(split_sections(s.class_no)) for s in self._items)

    def add_class(self, code: str, class_no: str) -> SelectionOutcome:
        code = (code or "").strip().upper()
        class_no = (class_no or "").strip()
        label = f"{code} class {class_no}" if class_no else code
        if self._has_class(code, class_no):
            return SelectionOutcome(False, [f"{label} is already in your timetable"])
        try:
            group = self.find_class(code, class_no)
        except OSError as exc:
            logger.warning("Course lookup failed for %s: %s", code, exc)
            return SelectionOutcome(False, [f"Could not load {code}, please try again"])
        if group is None or not group.sessions:
            return SelectionOutcome(False, [f"{label} was not found"])
        notices = []
        if self.is_selected(code, class_no):
            notices.append(f"{label} overlaps a section of {code} that is already in your timetable")
        self._items.extend(SelectedSession.from_session(s) for s in group.sessions)
        notices.append(f"Added {label}")
        return SelectionOutcome(True, notices)

    def remove_class(self, code: str, class_no: str) -> SelectionOutcome:
        code = (code or "").strip().upper()
        class_no = (class_no or "").strip()
        kept = [s for s in self._items if not (s.code == code and s.class_no == class_no)]
        if len(kept) == len(self._items):
            return SelectionOutcome(False, [f"{code} class {class_no} is not in your timetable"])
        self._items = kept
        return SelectionOutcome(True, [f"Removed {code} class {class_no}"])

    def clear(self) -> SelectionOutcome:
        changed = bool(self._items)
        self._items = []
        return SelectionOutcome(changed, ["Timetable cleared"] if changed else [])

    def export(self) -> str:
        return json.dumps([s.to_dict() for s in self._items], ensure_ascii=True)

    def import_(self, document) -> SelectionOutcome:
        """Replace the contents with an exported document.

        `document` may be JSON text/bytes or an already decoded object.
        Nothing changes unless the whole document is usable.
        """
        if isinstance(document, (bytes, bytearray)):
            document = document.decode("utf-8")
        if isinstance(document, str):
            try:
                document = json.loads(document)
            except ValueError as exc:
                raise SelectionImportError(f"timetable import is not valid JSON: {exc}") from exc
        if not isinstance(document, (list, tuple)):
            raise SelectionImportError(
                f"timetable import must be a list of sessions, got {type(document).__name__}"
            )
        items = []
        for idx, item in enumerate(document):
            if not isinstance(item, dict):
                raise SelectionImportError(f"timetable import item {idx} must be an object")
            items.append(SelectedSession.from_dict(item))
        self._items = items
        return SelectionOutcome(True, [f"Imported {len(items)} sessions"])

    def save(self) -> None:
        self.backend.write(self.export())

    def load(self) -> bool:
        """Restore from the backend; an empty or unreadable slot leaves the store empty."""
        document = self.backend.read()
        self._items = []
        if document is None:
            return False
        try:
            self.import_(document)
        except SelectionImportError as exc:
            logger.warning("Discarding unreadable saved timetable: %s", exc)
            return False
        return True
