"""Helpers to discover course catalog files under a local folder.

The loader scans supported extensions recursively and returns a list
of `Path` objects suitable for feeding to the catalog import.
"""

from pathlib import Path
from typing import List, Iterable, Optional

SUPPORTED_EXT = {'.csv', '.json', '.pdf', '.docx'}
DEFAULT_SKIP_KEYWORDS = ('draft', '~$')


def _should_skip(file_path: Path, skip_keywords: Iterable[str]) -> bool:
    """Return True if filename contains any skip keyword (case-insensitive)."""
    name = file_path.name.lower()
    return any(kw and kw.lower() in name for kw in skip_keywords)


def find_catalog_files(root: Path, term: Optional[str] = None, skip_keywords: Optional[Iterable[str]] = None) -> List[Path]:
    """Return file paths for supported catalog files.

    If `term` is provided only `root/<term>` is searched; otherwise every
    subdirectory of `root` is scanned. Office lock files (`~$...`) and
    drafts are ignored.
    """
    skip_keywords = list(skip_keywords) if skip_keywords is not None else list(DEFAULT_SKIP_KEYWORDS)
    if term:
        term_dir = root / str(term)
        if not term_dir.exists():
            return []
        search_paths = [term_dir]
    else:
        search_paths = [root]

    files = set()
    for p in search_paths:
        for f in p.rglob('*'):
            if f.is_file() and f.suffix.lower() in SUPPORTED_EXT and not _should_skip(f, skip_keywords):
                files.add(f)
    return sorted(files)
