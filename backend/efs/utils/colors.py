"""Display helpers: per-course colours and campus names."""

from __future__ import annotations

PALETTE = (
    "#3b82f6",
    "#10b981",
    "#f59e0b",
    "#ef4444",
    "#8b5cf6",
    "#ec4899",
    "#14b8a6",
    "#f97316",
)

CAMPUS_MAP = {
    "ADC": "Admiralty Learning Centre",
    "CIT": "CITA Learning Centre",
    "HPC": "HPSHCC Campus",
    "KEC": "Kowloon East Campus",
    "KWC": "Kowloon West Campus",
    "UNC": "United Centre",
}


def _to_int32(value: int) -> int:
    return ((value + 2**31) % 2**32) - 2**31


def color_for(course_code: str) -> str:
    """Map a course code to one of the palette colours.

    The hash mirrors the one the web front end uses so both sides agree on
    colours: `h = c + ((h << 5) - h)` with the shift done in 32-bit signed
    arithmetic. Collisions are expected.
    """
    h = 0
    for ch in course_code or "":
        h = ord(ch) + (_to_int32(_to_int32(h) << 5) - h)
    return PALETTE[abs(h) % len(PALETTE)]


def campus_for(room: str) -> str:
    room = room or ""
    return CAMPUS_MAP.get(room[:3].upper(), room)
