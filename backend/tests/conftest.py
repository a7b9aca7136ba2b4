import base64
import io
import json
import os
import tempfile
import uuid
from pathlib import Path

import pytest
from PIL import Image

# Point the app at a throwaway database and blob folder before `efs` is imported.
_TMP = Path(tempfile.mkdtemp(prefix="efs-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["BLOB_DIR"] = str(_TMP / "blobs")
os.environ["ADMIN_EMAIL"] = "admin@efs.test"
os.environ["ADMIN_PASSWORD"] = "admin-pass"
os.environ["LOGIN_RATE_LIMIT_PER_MIN"] = "1000"
os.environ["SEARCH_RATE_LIMIT_PER_MIN"] = "1000"
os.environ.pop("SMTP_HOST", None)

from fastapi.testclient import TestClient  # noqa: E402
from efs.main import app  # noqa: E402

_client = TestClient(app)


def _login(email: str, password: str) -> dict:
    r = _client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def png_bytes():
    img = Image.new("RGB", (64, 32), "white")
    bio = io.BytesIO()
    img.save(bio, format="PNG")
    return bio.getvalue()


@pytest.fixture
def photo_data(png_bytes):
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")


@pytest.fixture
def admin_headers():
    return _login("admin@efs.test", "admin-pass")


@pytest.fixture
def make_user(admin_headers, photo_data):
    """Register, approve and log in a fresh user; returns `(sid, headers)`."""
    def _make():
        sid = f"s{uuid.uuid4().hex[:10]}"
        email = f"{sid}@student.test"
        r = _client.post("/auth/register", json={
            "sid": sid, "email": email, "password": "pw123", "photo_data": photo_data,
        })
        assert r.status_code == 201, r.text
        r = _client.post(f"/admin/pending/accounts/{sid}/approve", headers=admin_headers)
        assert r.status_code == 200, r.text
        return sid, _login(email, "pw123")
    return _make


@pytest.fixture
def user_headers(make_user):
    return make_user()[1]


@pytest.fixture
def unique_code():
    return lambda prefix="T": f"{prefix}{uuid.uuid4().hex[:6].upper()}"


@pytest.fixture
def seeded_course(admin_headers, unique_code):
    """Import one course with two classes; returns its code."""
    code = unique_code("ENG")
    catalog = [{
        "code": code,
        "title": "English for Academic Purposes",
        "timetable": [
            {"classNo": "01", "day": "Mon", "time": "09:00-10:30", "room": "KEC 301"},
            {"classNo": "01", "day": "Thu", "time": "14:00-15:30", "room": "KEC 301"},
            {"classNo": "02", "day": "Tue", "time": "11:00-12:30", "room": "ADC 201"},
        ],
    }]
    files = {"file": ("catalog.json", json.dumps(catalog).encode("utf-8"), "application/json")}
    r = _client.post("/admin/courses/import", files=files, headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["created"] == 1
    return code
