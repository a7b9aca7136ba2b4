"""Group raw session records into registrable classes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from ..schemas import SessionRecord


@dataclass
class ClassGroup:
    """All sessions sharing one `(course_code, class_no)` identity.

    A class number such as `"01+02"` marks a combined class: several
    original sections meeting at the same time and place.
    """
    course_code: str
    class_no: str
    sessions: List[SessionRecord] = field(default_factory=list)

    @property
    def is_combined(self) -> bool:
        return "+" in self.class_no

    @property
    def original_class_no(self) -> str:
        return self.class_no

    @property
    def original_sections(self) -> Tuple[str, ...]:
        return split_sections(self.class_no)

    @property
    def name(self) -> str:
        return next((s.name for s in self.sessions if s.name), "")

    def meeting_key(self) -> Tuple:
        return tuple(sorted((int(s.weekday), s.start_time, s.end_time, s.room) for s in self.sessions))

    def to_dict(self) -> dict:
        return {
            "code": self.course_code,
            "classNo": self.class_no,
            "name": self.name,
            "isCombined": self.is_combined,
            "originalSections": list(self.original_sections),
            "sessions": [s.model_dump(by_alias=True) for s in self.sessions],
        }


def split_sections(class_no: str) -> Tuple[str, ...]:
    """Return the original section numbers of a (possibly combined) class number."""
    parts = tuple(p.strip() for p in (class_no or "").split("+") if p.strip())
    return parts or ((class_no or "").strip(),)


def aggregate_sessions(sessions: Iterable[SessionRecord]) -> List[ClassGroup]:
    """Group sessions by `(code, class_no)` in one pass.

    Groups come out in first-seen order and keep their members in input
    order. A blank class number is a class of its own: every blank
    session of a course ends up in the single `(code, "")` group.
    """
    groups: Dict[Tuple[str, str], ClassGroup] = {}
    for s in sessions:
        key = (s.code, s.class_no or "")
        group = groups.get(key)
        if group is None:
            group = groups[key] = ClassGroup(course_code=key[0], class_no=key[1])
        group.sessions.append(s)
    return list(groups.values())


def _combined_class_no(class_nos: Iterable[str]) -> str:
    parts = set()
    for c in class_nos:
        parts.update(split_sections(c))
    return "+".join(sorted(parts))


def combine_sections(groups: Iterable[ClassGroup]) -> List[ClassGroup]:
    """Merge classes of one course that meet at exactly the same times and rooms.

    The merged group is keyed by the sorted `+`-joined section numbers and
    carries the sessions of the first group, relabelled. Groups without
    sessions are never merged.
    """
    buckets: Dict[Tuple, List[ClassGroup]] = {}
    order: List[Tuple] = []
    for g in groups:
        key = (g.course_code, g.meeting_key()) if g.sessions else (g.course_code, g.class_no, id(g))
        if key not in buckets:
            buckets[key] = []
            order.append(key)
        buckets[key].append(g)

    out: List[ClassGroup] = []
    for key in order:
        members = buckets[key]
        if len(members) == 1:
            out.append(members[0])
            continue
        class_no = _combined_class_no(m.class_no for m in members)
        sessions = [s.model_copy(update={"class_no": class_no}) for s in members[0].sessions]
        out.append(ClassGroup(course_code=members[0].course_code, class_no=class_no, sessions=sessions))
    return out
