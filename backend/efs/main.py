"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the Educational Facilitation
System backend. Controllers are intentionally thin: they accept requests,
delegate to services, and return JSON responses.

Endpoints implemented:
- /auth/register, /auth/login, /auth/check, /me
- /admin/... account and course approval, catalog import, credits
- /courses, /courses/list, /courses/search, /courses/{code}, /courses/{code}/classes
- /courses/request
- /calendar/courses, /calendar/events, /calendar/mytimetable, /calendar/save
- /calendar/classes, /calendar/export, /calendar/import
- /questionnaires, /questionnaires/my, /questionnaires/{id}/fill
- /materials/{code}, /materials/file/{material_id}
- /group/requests, /group/requests/{id}/invite, /group/requests/{id}
- /profile/update, /profile/{sid}, /dashboard/summary
- /health
"""

from typing import Any, Optional

from fastapi import FastAPI, Body, Depends, UploadFile, File, Form, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
import os
import json
import logging
import time
import uuid
from urllib.parse import quote
from .database import create_db_and_tables, get_session
from . import services, models
from .auth import get_current_user, get_admin_user, get_token_sid
from .schemas import (
    ClassSelectionIn,
    CourseRequestIn,
    CourseUpdateIn,
    CreditsIn,
    GroupInviteIn,
    GroupRequestIn,
    LoginIn,
    ProfileUpdateIn,
    QuestionnaireIn,
    RegisterIn,
)
from .utils.mail import MailOutbox
from .utils.rate_limit import InMemoryRateLimiter, rate_key
from .utils.selection import SelectionImportError
from .config import settings

app = FastAPI(title="Educational Facilitation System API")
logger = logging.getLogger("efs.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
_rate_limiter = InMemoryRateLimiter()
_outbox = MailOutbox(
    max_jobs=int(os.getenv("MAIL_JOB_MAX_JOBS", "500")),
    ttl_seconds=int(os.getenv("MAIL_JOB_TTL_SECONDS", "86400")),
)

# Wide-open CORS lets the static front end run from any local origin in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


def _request_line(request: Request, req_id: str, started: float, status_code: Optional[int] = None) -> str:
    entry = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
        "client": request.client.host if request.client else "unknown",
    }
    if status_code is not None:
        entry["status_code"] = status_code
    return json.dumps(entry, ensure_ascii=True)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request_failed %s", _request_line(request, req_id, started))
        raise
    response.headers["X-Request-ID"] = req_id
    logger.info("request_done %s", _request_line(request, req_id, started, response.status_code))
    return response


def _validate_upload_filename(filename: str) -> None:
    if not filename or len(filename) > 200:
        raise HTTPException(status_code=400, detail="invalid filename")
    if "/" in filename or "\\" in filename:
        raise HTTPException(status_code=400, detail="invalid filename path")


def _attachment_headers(filename: str) -> dict:
    """Content-Disposition with an ASCII fallback name and the RFC 5987 UTF-8 name."""
    fallback = filename.encode("ascii", "ignore").decode("ascii").replace('"', "").strip()
    if not fallback or fallback.startswith("."):
        fallback = "download" + fallback
    return {'Content-Disposition': f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"}


def _read_upload(file: UploadFile) -> bytes:
    _validate_upload_filename(file.filename)
    content = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail='file too large')
    return content


def _enforce_rate_limit(request: Request, max_per_min: int, sid: Optional[str] = None) -> None:
    window = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
    key = rate_key(request.url.path, request.client.host if request.client else None, sid)
    allowed, retry_after = _rate_limiter.allow(key, max_per_min, window)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


def _raise_http(exc: Exception):
    """Translate a service exception into the matching HTTP error."""
    if isinstance(exc, services.ConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, PermissionError):
        raise HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, LookupError):
        raise HTTPException(status_code=404, detail=str(exc).strip("'\""))
    raise HTTPException(status_code=400, detail=str(exc))


@app.get('/health')
def health():
    return {'status': 'ok'}


# ---- accounts ----

@app.post('/auth/register', status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Submit a registration; the account is usable after admin approval."""
    try:
        pending = services.AuthService(db, _outbox).register(payload)
    except ValueError as e:
        _raise_http(e)
    return {'message': 'Registration submitted. Please wait for admin approval.', 'sid': pending.sid}


@app.post('/auth/login')
def login(payload: LoginIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate by email and return a JWT with the user profile."""
    _enforce_rate_limit(request, settings.LOGIN_RATE_LIMIT_PER_MIN)
    result = services.AuthService(db).authenticate(payload.email, payload.password)
    if not result:
        raise HTTPException(status_code=401, detail='invalid credentials')
    token, user = result
    return {'access_token': token, 'user': services.user_out(user)}


@app.get('/auth/check')
def auth_check(user: models.User = Depends(get_current_user)):
    return {'user': services.user_out(user)}


@app.get('/me')
def me(user: models.User = Depends(get_current_user)):
    return services.user_out(user)


# ---- admin ----

@app.get('/admin/pending/accounts')
def admin_pending_accounts(db: Session = Depends(get_session), admin: models.User = Depends(get_admin_user)):
    return services.AdminService(db).list_pending_accounts()


@app.post('/admin/pending/accounts/{sid}/approve')
def admin_approve_account(sid: str, db: Session = Depends(get_session), admin: models.User = Depends(get_admin_user)):
    try:
        user = services.AdminService(db, _outbox).approve_account(sid)
    except LookupError as e:
        _raise_http(e)
    return services.user_out(user)


@app.post('/admin/pending/accounts/{sid}/reject')
def admin_reject_account(sid: str, reason: str = Body('', embed=True), db: Session = Depends(get_session),
                         admin: models.User = Depends(get_admin_user)):
    try:
        services.AdminService(db, _outbox).reject_account(sid, reason)
    except LookupError as e:
        _raise_http(e)
    return {'message': 'Account rejected', 'sid': sid}


@app.get('/admin/pending/courses')
def admin_pending_courses(db: Session = Depends(get_session), admin: models.User = Depends(get_admin_user)):
    return services.AdminService(db).list_pending_courses()


@app.post('/admin/pending/courses/{code}/approve')
def admin_approve_course(code: str, db: Session = Depends(get_session), admin: models.User = Depends(get_admin_user)):
    try:
        course = services.AdminService(db).approve_course(code)
    except LookupError as e:
        _raise_http(e)
    return services.course_out(course)


@app.post('/admin/pending/courses/{code}/reject')
def admin_reject_course(code: str, db: Session = Depends(get_session), admin: models.User = Depends(get_admin_user)):
    try:
        services.AdminService(db).reject_course(code)
    except LookupError as e:
        _raise_http(e)
    return {'message': 'Course request rejected', 'code': code.upper()}


@app.put('/admin/courses/{code}')
def admin_update_course(code: str, update: CourseUpdateIn, db: Session = Depends(get_session),
                        admin: models.User = Depends(get_admin_user)):
    """Edit title/description; a `timetable` list replaces all sessions."""
    try:
        return services.AdminService(db).update_course(code, update)
    except (ValueError, LookupError) as e:
        _raise_http(e)


@app.post('/admin/courses/import')
def admin_import_courses(file: UploadFile = File(...), dry_run: bool = Form(False), db: Session = Depends(get_session),
                         admin: models.User = Depends(get_admin_user)):
    """Upload a catalog file (JSON, CSV, PDF or DOCX) and upsert its courses.

    Returns a JSON summary with created/updated counts and per-entry errors.
    """
    content = _read_upload(file)
    try:
        res = services.AdminService(db).import_catalog(content, file.filename, dry_run=dry_run)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return JSONResponse(status_code=200, content=res)


@app.get('/admin/users')
def admin_users(db: Session = Depends(get_session), admin: models.User = Depends(get_admin_user)):
    return services.AdminService(db).list_users()


@app.post('/admin/users/{sid}/credits')
def admin_set_credits(sid: str, payload: CreditsIn, db: Session = Depends(get_session),
                      admin: models.User = Depends(get_admin_user)):
    try:
        user = services.AdminService(db).set_credits(sid, payload.credits)
    except (ValueError, LookupError) as e:
        _raise_http(e)
    return services.user_out(user)


# ---- courses ----

@app.get('/courses')
def course_map(db: Session = Depends(get_session)):
    """Map of approved course code to title."""
    return services.CourseService(db).course_map()


@app.get('/courses/list')
def course_list(db: Session = Depends(get_session)):
    return services.CourseService(db).list_courses()


@app.get('/courses/search')
def course_search(request: Request, q: str = '', seq: Optional[int] = None, db: Session = Depends(get_session),
                  sid: Optional[str] = Depends(get_token_sid)):
    """Search approved courses by code prefix or title substring.

    `seq` is echoed back so clients can drop responses that arrive after
    a newer query's results. Signed-in callers are rate limited per
    student id, anonymous ones per address.
    """
    _enforce_rate_limit(request, settings.SEARCH_RATE_LIMIT_PER_MIN, sid)
    results = services.CourseService(db).search(q, settings.SEARCH_LIMIT)
    return {'seq': seq, 'query': q, 'results': results}


@app.post('/courses/request', status_code=201)
def course_request(payload: CourseRequestIn, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    try:
        course = services.CourseService(db).request_course(user, payload)
    except ValueError as e:
        _raise_http(e)
    return services.course_out(course)


@app.get('/courses/{code}')
def course_detail(code: str, db: Session = Depends(get_session)):
    try:
        return services.CourseService(db).get_course(code)
    except LookupError as e:
        _raise_http(e)


@app.get('/courses/{code}/classes')
def course_classes(code: str, db: Session = Depends(get_session)):
    """Registrable classes of a course, every meeting of a class grouped together."""
    return services.CourseService(db).list_classes(code)


# ---- calendar ----

@app.get('/calendar/courses')
def calendar_courses(db: Session = Depends(get_session)):
    return services.CourseService(db).calendar_courses()


@app.get('/calendar/events')
def calendar_events(weeks: Optional[int] = None, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    """Dated events for the caller's timetable, starting this week."""
    svc = services.TimetableService(db, user.sid)
    try:
        events = svc.events(settings.TIMETABLE_WEEKS if weeks is None else weeks)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [e.to_dict() for e in events]


@app.get('/calendar/mytimetable')
def my_timetable(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.TimetableService(db, user.sid).selections()


@app.post('/calendar/save')
def save_timetable(document: Any = Body(...), db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    """Replace the caller's saved timetable with the posted selection list."""
    try:
        return services.TimetableService(db, user.sid).replace(document)
    except SelectionImportError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete('/calendar/mytimetable')
def clear_timetable(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.TimetableService(db, user.sid).clear()


@app.get('/calendar/classes/{code}/{class_no}')
def class_selected(code: str, class_no: str, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    return {'selected': services.TimetableService(db, user.sid).is_selected(code, class_no)}


@app.post('/calendar/classes')
def add_class(payload: ClassSelectionIn, db: Session = Depends(get_session),
              user: models.User = Depends(get_current_user)):
    """Add every meeting of one class; `changed` is false when nothing was added."""
    return services.TimetableService(db, user.sid).add_class(payload.code, payload.class_no)


@app.delete('/calendar/classes/{code}/{class_no}')
def remove_class(code: str, class_no: str, db: Session = Depends(get_session),
                 user: models.User = Depends(get_current_user)):
    return services.TimetableService(db, user.sid).remove_class(code, class_no)


@app.delete('/calendar/classes/{code}')
def remove_unnumbered_class(code: str, db: Session = Depends(get_session),
                            user: models.User = Depends(get_current_user)):
    """Remove the class of a course that has no class number."""
    return services.TimetableService(db, user.sid).remove_class(code, '')


@app.get('/calendar/export')
def export_timetable(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    document = services.TimetableService(db, user.sid).export()
    return Response(
        content=document,
        media_type='application/json',
        headers=_attachment_headers('timetable.json'),
    )


@app.post('/calendar/import')
def import_timetable(file: UploadFile = File(...), db: Session = Depends(get_session),
                     user: models.User = Depends(get_current_user)):
    content = _read_upload(file)
    try:
        return services.TimetableService(db, user.sid).replace(content)
    except (SelectionImportError, UnicodeDecodeError) as e:
        raise HTTPException(status_code=400, detail=str(e))


# ---- questionnaires ----

@app.get('/questionnaires')
def questionnaires(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.QuestionnaireService(db).list_active()


@app.get('/questionnaires/my')
def my_questionnaires(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.QuestionnaireService(db).list_mine(user)


@app.post('/questionnaires', status_code=201)
def create_questionnaire(payload: QuestionnaireIn, db: Session = Depends(get_session),
                         user: models.User = Depends(get_current_user)):
    """Post a questionnaire; costs `QUESTIONNAIRE_COST` credits."""
    try:
        q = services.QuestionnaireService(db).create(user, payload)
    except ValueError as e:
        _raise_http(e)
    return {**services.questionnaire_out(q), 'remaining_credits': user.credits}


@app.post('/questionnaires/{questionnaire_id}/fill')
def fill_questionnaire(questionnaire_id: int, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    """Record a response to someone else's questionnaire and earn a credit."""
    try:
        q = services.QuestionnaireService(db).fill(user, questionnaire_id)
    except (ValueError, LookupError) as e:
        _raise_http(e)
    return {**services.questionnaire_out(q), 'new_credits': user.credits}


# ---- materials ----

@app.post('/materials/{code}', status_code=201)
def upload_material(code: str, file: UploadFile = File(...), description: str = Form(''),
                    db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    content = _read_upload(file)
    try:
        material = services.MaterialService(db).upload(
            user, code, content, file.filename, file.content_type, description
        )
    except LookupError as e:
        _raise_http(e)
    return services.material_out(material)


@app.get('/materials/{code}')
def list_materials(code: str, db: Session = Depends(get_session)):
    return services.MaterialService(db).list_for_course(code)


@app.get('/materials/file/{material_id}')
def download_material(material_id: int, db: Session = Depends(get_session)):
    try:
        payload, material = services.MaterialService(db).download(material_id)
    except LookupError as e:
        _raise_http(e)
    return Response(
        content=payload,
        media_type=material.content_type,
        headers=_attachment_headers(material.name),
    )


@app.delete('/materials/file/{material_id}')
def delete_material(material_id: int, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    try:
        services.MaterialService(db).delete(user, material_id)
    except (PermissionError, LookupError) as e:
        _raise_http(e)
    return {'message': 'Material deleted', 'id': material_id}


# ---- study groups ----

@app.get('/group/requests')
def group_requests(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.GroupService(db).list_active()


@app.post('/group/requests', status_code=201)
def create_group_request(payload: GroupRequestIn, db: Session = Depends(get_session),
                         user: models.User = Depends(get_current_user)):
    try:
        request = services.GroupService(db, _outbox).create(user, payload)
    except ValueError as e:
        _raise_http(e)
    return services.group_request_out(request)


@app.post('/group/requests/{request_id}/invite')
def invite_to_group(request_id: int, payload: Optional[GroupInviteIn] = Body(None),
                    db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Mail the poster of a request; the mail is queued, not awaited."""
    try:
        services.GroupService(db, _outbox).invite(user, request_id, payload.message if payload else "")
    except (ValueError, LookupError) as e:
        _raise_http(e)
    return {'message': 'Invitation sent', 'id': request_id}


@app.delete('/group/requests/{request_id}')
def delete_group_request(request_id: int, db: Session = Depends(get_session),
                         user: models.User = Depends(get_current_user)):
    try:
        services.GroupService(db).delete(user, request_id)
    except LookupError as e:
        _raise_http(e)
    return {'message': 'Group request deleted', 'id': request_id}


# ---- profile and dashboard ----

@app.put('/profile/update')
def update_profile(payload: ProfileUpdateIn, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    try:
        user = services.ProfileService(db).update(user, payload)
    except ValueError as e:
        _raise_http(e)
    return services.profile_out(user)


@app.get('/profile/{sid}')
def public_profile(sid: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    try:
        return services.ProfileService(db).public_profile(sid)
    except LookupError as e:
        _raise_http(e)


@app.get('/dashboard/summary')
def dashboard(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.dashboard_summary(db, user)
