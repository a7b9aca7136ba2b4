"""Filesystem blob store for uploaded photos and learning materials.

Blobs are content-addressed by sha256. Each blob has a JSON sidecar with
its original filename, content type and a reference count, so identical
uploads share one stored object and are only removed with their last
reference.
"""

from __future__ import annotations

import hashlib
import io
import json
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Optional

from PIL import Image

_WRITE_LOCK = Lock()
_BLOB_ID_RE = re.compile(r"^[0-9a-f]{64}$")


def get_blob_root() -> Path:
    """Return the base directory for stored blobs."""
    raw = os.getenv("BLOB_DIR", "")
    if raw.strip():
        return Path(raw).expanduser().resolve()
    return (Path(__file__).resolve().parents[2] / "data" / "blobs").resolve()


def validate_image(file_bytes: bytes) -> str:
    """Return the image format name or raise ValueError for non-images."""
    try:
        with Image.open(io.BytesIO(file_bytes)) as img:
            fmt = img.format or "image"
            img.verify()
        return fmt.lower()
    except Exception:
        raise ValueError("upload must be a valid image")


def _paths(blob_id: str) -> tuple[Path, Path]:
    if not _BLOB_ID_RE.match(blob_id or ""):
        raise ValueError("invalid blob id")
    root = get_blob_root()
    return root / "objects" / blob_id[:2] / blob_id, root / "meta" / f"{blob_id}.json"


def _read_meta(meta_path: Path) -> dict:
    try:
        return json.loads(meta_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}


def save_blob(
    *,
    file_bytes: bytes,
    filename: str,
    content_type: str = "application/octet-stream",
    metadata: Optional[dict] = None,
) -> dict:
    """Persist `file_bytes` and return its blob descriptor."""
    blob_id = hashlib.sha256(file_bytes).hexdigest()
    obj_path, meta_path = _paths(blob_id)
    with _WRITE_LOCK:
        duplicate = obj_path.exists()
        if not duplicate:
            obj_path.parent.mkdir(parents=True, exist_ok=True)
            obj_path.write_bytes(file_bytes)
        meta = _read_meta(meta_path) if duplicate else {}
        meta.setdefault("blob_id", blob_id)
        meta.setdefault("filename", filename)
        meta.setdefault("content_type", content_type)
        meta.setdefault("size", len(file_bytes))
        meta.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        meta["metadata"] = {**meta.get("metadata", {}), **(metadata or {})}
        meta["refs"] = int(meta.get("refs", 0)) + 1
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        meta_path.write_text(json.dumps(meta, ensure_ascii=True, indent=2), encoding="utf-8")
    return {**meta, "duplicate_of_existing": duplicate}


def read_blob(blob_id: str) -> tuple[bytes, dict]:
    """Return `(bytes, meta)`; raises LookupError when the blob is gone."""
    obj_path, meta_path = _paths(blob_id)
    if not obj_path.exists():
        raise LookupError(f"blob not found: {blob_id}")
    return obj_path.read_bytes(), _read_meta(meta_path)


def delete_blob(blob_id: str) -> bool:
    """Drop one reference; the file is removed with the last one."""
    obj_path, meta_path = _paths(blob_id)
    with _WRITE_LOCK:
        if not obj_path.exists():
            return False
        meta = _read_meta(meta_path)
        refs = int(meta.get("refs", 1)) - 1
        if refs > 0:
            meta["refs"] = refs
            meta_path.write_text(json.dumps(meta, ensure_ascii=True, indent=2), encoding="utf-8")
            return False
        obj_path.unlink()
        if meta_path.exists():
            meta_path.unlink()
    return True
