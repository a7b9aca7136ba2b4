"""File parsing utilities that convert course catalog files into a
normalized course list.

Supported input types: JSON, CSV, PDF and DOCX. Parsers return a list of
dictionaries with keys `code`, `title`, `description` and `timetable`,
where `timetable` holds raw session entries. Entries are turned into
validated `SessionRecord` objects by `parse_catalog_entry`.

PDF and DOCX catalogs are read from their tables: the first row whose
cells look like column names is the header, every following row is one
session.
"""

import io
import json
import csv
import re
import zipfile
from typing import Dict, Iterable, List, Optional

import docx
import pdfplumber
from docx.opc.exceptions import OpcError
from pdfminer.psexceptions import PSException
from pdfplumber.utils.exceptions import MalformedPDFException, PdfminerException

from ..schemas import SessionRecord
from . import weekdays

_HEADER_ALIASES = {
    "code": {"code", "course", "coursecode"},
    "title": {"title", "name", "coursetitle", "coursename"},
    "description": {"description"},
    "classNo": {"classno", "class", "section", "classnumber"},
    "day": {"day", "weekday"},
    "time": {"time"},
    "startTime": {"start", "starttime"},
    "endTime": {"end", "endtime"},
    "room": {"room", "venue", "location"},
}

# Errors raised by pdfplumber/pdfminer and python-docx for damaged files.
_UNREADABLE = (PSException, PdfminerException, MalformedPDFException, zipfile.BadZipFile, OpcError, KeyError)


def parse_file_to_courses(file_bytes: bytes, filename: str) -> List[Dict]:
    """Dispatch to the appropriate parser based on file extension.

    Raises ValueError for unsupported extensions and for files the
    matching reader cannot open (corrupt PDF, DOCX that is not a zip).
    """
    name = filename.lower()
    if name.endswith('.json'):
        return parse_json(file_bytes)
    if name.endswith('.csv'):
        return parse_csv(file_bytes)
    try:
        if name.endswith('.pdf'):
            return parse_pdf(file_bytes)
        if name.endswith('.docx'):
            return parse_docx(file_bytes)
    except _UNREADABLE as exc:
        raise ValueError('unreadable catalog file') from exc
    raise ValueError('Unsupported file type')


def parse_json(b: bytes):
    """Parse a JSON array of courses or of flat session records."""
    data = json.loads(b.decode('utf-8'))
    if isinstance(data, dict):
        data = data.get('courses') or data.get('data') or []
    if not isinstance(data, list):
        raise ValueError('catalog JSON must be a list')
    courses = []
    flat = []
    for item in data:
        if not isinstance(item, dict):
            continue
        if 'timetable' in item or 'title' in item:
            courses.append(normalize_course(item))
        else:
            flat.append(item)
    if flat:
        courses.extend(_group_rows(flat))
    return courses


def parse_csv(b: bytes):
    """Parse a CSV with one session per row.

    Expected columns: `code`, `title`, `class`, `day` and either `time`
    (`09:00-10:30`) or `start`/`end`, plus `room`. Header spelling is
    forgiving (`Course Code`, `class_no`, `Venue` ...).
    """
    sio = io.StringIO(b.decode('utf-8-sig'))
    reader = csv.reader(sio)
    return _group_rows(_rows_with_header(reader))


def parse_pdf(b: bytes):
    """Extract session rows from the tables of every PDF page."""
    rows = []
    with pdfplumber.open(io.BytesIO(b)) as pdf:
        for page in pdf.pages:
            for table in page.extract_tables() or []:
                rows.extend(_rows_with_header(table))
    return _group_rows(rows)


def parse_docx(b: bytes):
    """Extract session rows from the tables of a DOCX document."""
    doc = docx.Document(io.BytesIO(b))
    rows = []
    for table in doc.tables:
        cells = [[(c.text or '').strip() for c in row.cells] for row in table.rows]
        rows.extend(_rows_with_header(cells))
    return _group_rows(rows)


def normalize_course(item: dict) -> dict:
    """Map alternative keys of a course object to the canonical shape."""
    return {
        'code': str(item.get('code') or item.get('course_code') or '').strip().upper(),
        'title': str(item.get('title') or item.get('name') or '').strip(),
        'description': item.get('description') or '',
        'timetable': [e for e in (item.get('timetable') or []) if isinstance(e, dict)],
    }


def parse_catalog_entry(code: str, title: str, entry: dict) -> Optional[SessionRecord]:
    """Turn one catalog timetable entry into a `SessionRecord`.

    Accepts the catalog shape `{day: "Mon", time: "09:00-10:30", room,
    classNo}` as well as flat records with `weekday`/`startTime`/`endTime`.
    Entries with an unknown day or without a time range yield `None`;
    other invalid values raise `ValueError`.
    """
    raw_day = entry.get('weekday', entry.get('day'))
    try:
        day = weekdays.coerce(raw_day)
    except ValueError:
        return None
    start = entry.get('startTime') or entry.get('start_time')
    end = entry.get('endTime') or entry.get('end_time')
    if not (start and end):
        span = str(entry.get('time') or '').replace('–', '-')
        if '-' not in span:
            return None
        start, _, end = (p.strip() for p in span.partition('-'))
    if not (start and end):
        return None
    return SessionRecord(
        code=entry.get('code') or code,
        class_no=entry.get('classNo', entry.get('class_no')),
        weekday=day,
        start_time=str(start).strip(),
        end_time=str(end).strip(),
        room=entry.get('room') or '',
        name=entry.get('name') or title or '',
    )


def _canonical_header(cell) -> Optional[str]:
    key = re.sub(r'[^a-z]', '', str(cell or '').lower())
    for name, aliases in _HEADER_ALIASES.items():
        if key in aliases:
            return name
    return None


def _rows_with_header(rows: Iterable[List]) -> List[dict]:
    """Yield dict rows, using the first row naming a `code` column as header."""
    header = None
    out = []
    for row in rows:
        cells = [('' if c is None else str(c).strip()) for c in row]
        if not any(cells):
            continue
        if header is None:
            names = [_canonical_header(c) for c in cells]
            if 'code' in names:
                header = names
            continue
        out.append({name: value for name, value in zip(header, cells) if name})
    return out


def _group_rows(rows: Iterable[dict]) -> List[dict]:
    """Collect flat session rows into courses, keeping first-seen order."""
    courses: Dict[str, dict] = {}
    for row in rows:
        code = str(row.get('code') or '').strip().upper()
        if not code:
            continue
        course = courses.setdefault(code, {'code': code, 'title': '', 'description': '', 'timetable': []})
        title = str(row.get('title') or row.get('name') or '').strip()
        if title and not course['title']:
            course['title'] = title
        if row.get('description') and not course['description']:
            course['description'] = row['description']
        entry = {k: v for k, v in row.items() if k not in ('code', 'title', 'description')}
        if any(entry.values()):
            course['timetable'].append(entry)
    return list(courses.values())
