"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
the timetable helpers in `efs.utils` and auxiliary logic. Services are
intentionally thin: they perform validation, execute domain logic and
persist aggregates via repositories.

Errors are reported with plain exceptions that controllers translate to
HTTP responses: `ValueError` (bad input), `ConflictError` (duplicate or
already-active state), `LookupError` (missing entity) and
`PermissionError` (not allowed for this user).
"""

import base64
import binascii
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .schemas import (
    CourseRequestIn, CourseUpdateIn, GroupRequestIn, ProfileUpdateIn, QuestionnaireIn, RegisterIn, SessionRecord,
)
from .utils import blobs
from .utils.aggregator import aggregate_sessions
from .utils.mail import MailOutbox
from .utils.parsers import normalize_course, parse_catalog_entry, parse_file_to_courses
from .utils.projector import CalendarEvent, project
from .utils.selection import SelectedSession, SelectionOutcome, SelectionStore

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

logger = logging.getLogger("efs.services")


class ConflictError(ValueError):
    """The request clashes with existing state (duplicate, already active)."""


def _notify(outbox: Optional[MailOutbox], to: str, subject: str, body: str) -> None:
    if outbox is None or not to:
        return
    outbox.submit(to=to, subject=subject, body=body)


def now_local() -> datetime:
    """Current time in the campus timezone."""
    return datetime.now(ZoneInfo(settings.TIMEZONE))


def decode_photo(photo_data: str) -> bytes:
    """Decode a base64 photo, optionally wrapped in a `data:` URL."""
    raw = photo_data.split("base64,", 1)[1] if "base64," in photo_data else photo_data
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("photo must be base64 encoded")


class AuthService:
    """Registration (pending approval), login and token issuing."""
    def __init__(self, session: Session, outbox: Optional[MailOutbox] = None):
        self.session = session
        self.outbox = outbox
        self.user_repo = repositories.UserRepository(session)
        self.pending_repo = repositories.PendingAccountRepository(session)

    def register(self, payload: RegisterIn) -> models.PendingAccount:
        """Store a registration request with its student card photo.

        Raises ConflictError when the sid or email is already used by an
        account or another pending request.
        """
        if self.user_repo.exists(payload.sid, payload.email) or self.pending_repo.exists(payload.sid, payload.email):
            raise ConflictError("User already exists or pending approval")
        photo = decode_photo(payload.photo_data)
        if len(photo) > settings.MAX_UPLOAD_BYTES:
            raise ValueError("photo too large")
        fmt = blobs.validate_image(photo)
        blob = blobs.save_blob(
            file_bytes=photo,
            filename=payload.file_name,
            content_type=f"image/{fmt}",
            metadata={"uploaded_by": payload.sid, "type": "student_card"},
        )
        account = self.pending_repo.create(models.PendingAccount(
            sid=payload.sid,
            email=payload.email,
            password_hash=PWD_CTX.hash(payload.password),
            photo_blob_id=blob["blob_id"],
        ))
        _notify(
            self.outbox,
            settings.ADMIN_EMAIL,
            "New Account Request - EFS Platform",
            f"<h2>New Account Request</h2><p><strong>Student ID:</strong> {account.sid}</p>"
            f"<p><strong>Email:</strong> {account.email}</p>"
            "<p>Please login to the admin panel to review this request.</p>",
        )
        return account

    def authenticate(self, email: str, password: str):
        """Verify credentials and return `(token, user)` on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_email(email)
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return self.issue_token(user), user

    @staticmethod
    def issue_token(user: models.User) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"sid": user.sid, "role": user.role, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def user_out(user: models.User) -> dict:
    return {
        "sid": user.sid,
        "email": user.email,
        "role": user.role,
        "credits": user.credits,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def course_out(course: models.Course) -> dict:
    return {
        "code": course.code,
        "title": course.title,
        "description": course.description,
        "status": course.status,
    }


class AdminService:
    """Back-office operations: account and course approval, catalog upkeep."""
    def __init__(self, session: Session, outbox: Optional[MailOutbox] = None):
        self.session = session
        self.outbox = outbox
        self.user_repo = repositories.UserRepository(session)
        self.pending_repo = repositories.PendingAccountRepository(session)
        self.course_repo = repositories.CourseRepository(session)

    def list_pending_accounts(self) -> List[dict]:
        return [
            {"sid": p.sid, "email": p.email, "photo_blob_id": p.photo_blob_id, "created_at": p.created_at.isoformat()}
            for p in self.pending_repo.list_all()
        ]

    def approve_account(self, sid: str) -> models.User:
        pending = self.pending_repo.get_by_sid(sid)
        if not pending:
            raise LookupError("Pending account not found")
        user = self.user_repo.create(models.User(
            sid=pending.sid,
            email=pending.email,
            password_hash=pending.password_hash,
            photo_blob_id=pending.photo_blob_id,
            role="user",
            credits=settings.INITIAL_CREDITS,
        ))
        self.pending_repo.delete(pending)
        _notify(
            self.outbox,
            user.email,
            "Account Approved - EFS Platform",
            f"<h2>Welcome to EFS Platform!</h2><p><strong>Student ID:</strong> {user.sid}</p>"
            f"<p>You have received <strong>{settings.INITIAL_CREDITS} credits</strong> to start using the platform.</p>",
        )
        logger.info("approved account %s", user.sid)
        return user

    def reject_account(self, sid: str, reason: str = "") -> None:
        pending = self.pending_repo.get_by_sid(sid)
        if not pending:
            raise LookupError("Pending account not found")
        email = pending.email
        if pending.photo_blob_id:
            blobs.delete_blob(pending.photo_blob_id)
        self.pending_repo.delete(pending)
        _notify(
            self.outbox,
            email,
            "Account Request Rejected - EFS Platform",
            "<h2>Account Request Update</h2><p>Your account request was not approved.</p>"
            + (f"<p><strong>Reason:</strong> {reason}</p>" if reason else ""),
        )
        logger.info("rejected account %s", sid)

    def list_pending_courses(self) -> List[dict]:
        return [{**course_out(c), "requested_by": c.requested_by} for c in self.course_repo.list_by_status("pending")]

    def approve_course(self, code: str) -> models.Course:
        course = self.course_repo.get(code, include_pending=True)
        if not course or course.status != "pending":
            raise LookupError("Pending course not found")
        course.status = "approved"
        return self.course_repo.save(course)

    def reject_course(self, code: str) -> None:
        course = self.course_repo.get(code, include_pending=True)
        if not course or course.status != "pending":
            raise LookupError("Pending course not found")
        self.course_repo.delete(course)

    def update_course(self, code: str, update: CourseUpdateIn) -> dict:
        """Edit a course; a given timetable replaces every session at once.

        Raises ValueError naming the first invalid timetable entry, in
        which case nothing is changed.
        """
        course = self.course_repo.get(code, include_pending=True)
        if not course:
            raise LookupError("Course not found")
        sessions = None
        if update.timetable is not None:
            sessions = []
            for idx, entry in enumerate(update.timetable):
                try:
                    record = parse_catalog_entry(course.code, update.title or course.title, entry)
                except ValueError as e:
                    raise ValueError(f"timetable entry {idx}: {e}")
                if record is None:
                    raise ValueError(f"timetable entry {idx}: missing day or time range")
                sessions.append(record)
        if update.title is not None:
            if not update.title.strip():
                raise ValueError("title must not be empty")
            course.title = update.title.strip()
        if update.description is not None:
            course.description = update.description
        self.course_repo.save(course)
        if sessions is not None:
            self.course_repo.replace_sessions(course, sessions)
        return {**course_out(course), "sessions": len(self.course_repo.list_session_rows(course.id))}

    def import_catalog(self, file_bytes: bytes, filename: str, dry_run: bool = False) -> dict:
        """Parse a catalog file and create or update its courses.

        Each course's timetable is replaced by the sessions found in the
        file. Returns counts plus per-entry `errors`; entries that cannot
        be read (unknown day, no time range) are counted as skipped.
        """
        parsed = parse_file_to_courses(file_bytes, filename)
        created = updated = session_count = skipped = 0
        errors = []
        for idx, raw in enumerate(parsed):
            item = normalize_course(raw)
            if not item["code"]:
                errors.append({"index": idx, "error": "missing course code"})
                continue
            records: List[SessionRecord] = []
            for entry_idx, entry in enumerate(item["timetable"]):
                try:
                    record = parse_catalog_entry(item["code"], item["title"], entry)
                except ValueError as e:
                    errors.append({"index": idx, "entry": entry_idx, "code": item["code"], "error": str(e)})
                    continue
                if record is None:
                    skipped += 1
                    continue
                records.append(record)
            if dry_run:
                session_count += len(records)
                continue
            course = self.course_repo.get(item["code"], include_pending=True)
            if course is None:
                course = self.course_repo.create(models.Course(
                    code=item["code"], title=item["title"] or item["code"], description=item["description"],
                ))
                created += 1
            else:
                course.status = "approved"
                if item["title"]:
                    course.title = item["title"]
                if item["description"]:
                    course.description = item["description"]
                self.course_repo.save(course)
                updated += 1
            self.course_repo.replace_sessions(course, records)
            session_count += len(records)
        return {"created": created, "updated": updated, "sessions": session_count, "skipped": skipped, "errors": errors}

    def list_users(self) -> List[dict]:
        return [user_out(u) for u in self.user_repo.list_all()]

    def set_credits(self, sid: str, credits: int) -> models.User:
        if credits < 0:
            raise ValueError("credits must be >= 0")
        user = self.user_repo.get_by_sid(sid)
        if not user:
            raise LookupError("User not found")
        user.credits = credits
        return self.user_repo.save(user)


class CourseService:
    """Catalog lookups for students: course pages, classes and search."""
    def __init__(self, session: Session):
        self.session = session
        self.course_repo = repositories.CourseRepository(session)

    def course_map(self) -> dict:
        return {c.code: c.title for c in self.course_repo.list_by_status("approved")}

    def list_courses(self) -> List[dict]:
        return [course_out(c) for c in self.course_repo.list_by_status("approved")]

    def get_course(self, code: str) -> dict:
        """Approved or pending course with its timetable and materials."""
        course = self.course_repo.get(code, include_pending=True)
        if not course:
            raise LookupError("Course not found")
        timetable = [
            {"day": SelectedSession.from_session(s).day, "time": f"{s.start_time}-{s.end_time}",
             "room": s.room, "classNo": s.class_no}
            for s in self.course_repo.sessions_of(course)
        ]
        materials = [material_out(m) for m in repositories.MaterialRepository(self.session).list_for_course(course.code)]
        return {**course_out(course), "timetable": timetable, "materials": materials}

    def list_classes(self, code: str) -> List[dict]:
        """ClassGroups of an approved course sorted by class number; [] when unknown."""
        groups = aggregate_sessions(self.course_repo.list_sessions(code))
        return [g.to_dict() for g in sorted(groups, key=lambda g: g.class_no)]

    def search(self, query: str, limit: int) -> List[dict]:
        if not query.strip():
            return []
        return [{"code": c.code, "title": c.title} for c in self.course_repo.search(query, limit=limit)]

    def request_course(self, user: models.User, payload: CourseRequestIn) -> models.Course:
        if self.course_repo.get(payload.code, include_pending=True):
            raise ConflictError("Course already exists or pending approval")
        return self.course_repo.create(models.Course(
            code=payload.code, title=payload.title, status="pending", requested_by=user.sid,
        ))

    def calendar_courses(self) -> List[dict]:
        return [SelectedSession.from_session(s).to_dict() for s in self.course_repo.list_all_sessions()]


class TimetableService:
    """Server-side selection store of one user plus its projection."""
    def __init__(self, session: Session, sid: str):
        self.session = session
        course_repo = repositories.CourseRepository(session)
        self.store = SelectionStore(
            lookup=course_repo.list_sessions,
            backend=repositories.DatabaseBackend(session, sid),
        )
        self.store.load()

    def selections(self) -> List[dict]:
        return [s.to_dict() for s in self.store.selections]

    def _outcome(self, outcome: SelectionOutcome) -> dict:
        if outcome.changed:
            self.store.save()
        return {"changed": outcome.changed, "notices": outcome.notices, "data": self.selections()}

    def add_class(self, code: str, class_no: str) -> dict:
        return self._outcome(self.store.add_class(code, class_no))

    def is_selected(self, code: str, class_no: str) -> bool:
        return self.store.is_selected(code, class_no)

    def remove_class(self, code: str, class_no: str) -> dict:
        return self._outcome(self.store.remove_class(code, class_no))

    def clear(self) -> dict:
        return self._outcome(self.store.clear())

    def replace(self, document) -> dict:
        """Replace the whole selection (save / import). Raises SelectionImportError."""
        return self._outcome(self.store.import_(document))

    def export(self) -> str:
        return self.store.export()

    def events(self, weeks: int, reference: Optional[datetime] = None) -> List[CalendarEvent]:
        if weeks < 0:
            raise ValueError("weeks must be >= 0")
        return project(self.store.selections, reference or now_local(), weeks)


def questionnaire_out(q: models.Questionnaire, filled_by: Optional[List[str]] = None) -> dict:
    out = {
        "id": q.id,
        "creator_sid": q.creator_sid,
        "creator_email": q.creator_email,
        "description": q.description,
        "link": q.link,
        "target_responses": q.target_responses,
        "current_responses": q.current_responses,
        "status": q.status,
        "created_at": q.created_at.isoformat(),
    }
    if filled_by is not None:
        out["filled_by"] = filled_by
    return out


class QuestionnaireService:
    """Credit exchange: pay to post a questionnaire, earn by filling others'."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.QuestionnaireRepository(session)

    def list_active(self) -> List[dict]:
        return [questionnaire_out(q) for q in self.repo.list_active()]

    def list_mine(self, user: models.User) -> List[dict]:
        return [questionnaire_out(q, self.repo.filled_by(q.id)) for q in self.repo.list_by_creator(user.sid)]

    def create(self, user: models.User, payload: QuestionnaireIn) -> models.Questionnaire:
        """Post a questionnaire, deducting the posting cost.

        A user can only have one active questionnaire, and must be able
        to afford the cost without going below zero credits.
        """
        cost = settings.QUESTIONNAIRE_COST
        if user.credits < cost or user.credits <= 0:
            raise ValueError(f"Insufficient credits. Need {cost} credits.")
        if self.repo.active_for(user.sid):
            raise ConflictError("You already have an active questionnaire")
        user.credits -= cost
        user.updated_at = datetime.now(timezone.utc)
        q = models.Questionnaire(
            creator_sid=user.sid,
            creator_email=user.email,
            description=payload.description.strip(),
            link=payload.link.strip(),
            target_responses=payload.target_responses,
        )
        self.session.add(user)
        self.session.add(q)
        self.session.commit()
        self.session.refresh(q)
        return q

    def fill(self, user: models.User, questionnaire_id: int) -> models.Questionnaire:
        """Record that `user` filled the questionnaire and pay one credit."""
        q = self.repo.get(questionnaire_id)
        if not q or q.status != "active":
            raise LookupError("Questionnaire not found")
        if q.creator_sid == user.sid:
            raise ValueError("Cannot fill your own questionnaire")
        if self.repo.has_filled(q.id, user.sid):
            raise ValueError("Already filled this questionnaire")
        q.current_responses += 1
        if q.current_responses >= q.target_responses:
            q.status = "completed"
        q.updated_at = datetime.now(timezone.utc)
        user.credits += 1
        user.updated_at = datetime.now(timezone.utc)
        self.session.add(models.QuestionnaireFill(questionnaire_id=q.id, sid=user.sid))
        self.session.add(q)
        self.session.add(user)
        self.session.commit()
        self.session.refresh(q)
        return q


def material_out(m: models.Material) -> dict:
    return {
        "id": m.id,
        "course_code": m.course_code,
        "name": m.name,
        "description": m.description,
        "size": m.size,
        "content_type": m.content_type,
        "uploaded_by": m.uploaded_by,
        "uploaded_at": m.uploaded_at.isoformat(),
    }


class MaterialService:
    """Upload, list, download and delete course materials."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.MaterialRepository(session)
        self.course_repo = repositories.CourseRepository(session)

    def upload(self, user: models.User, code: str, file_bytes: bytes, filename: str,
               content_type: Optional[str], description: str = "") -> models.Material:
        course = self.course_repo.get(code)
        if not course:
            raise LookupError("Course not found")
        blob = blobs.save_blob(
            file_bytes=file_bytes,
            filename=filename,
            content_type=content_type or "application/octet-stream",
            metadata={"uploaded_by": user.sid, "type": "material", "course": course.code},
        )
        return self.repo.create(models.Material(
            course_code=course.code,
            name=filename,
            description=description or "",
            blob_id=blob["blob_id"],
            size=len(file_bytes),
            content_type=content_type or "application/octet-stream",
            uploaded_by=user.sid,
        ))

    def list_for_course(self, code: str) -> List[dict]:
        return [material_out(m) for m in self.repo.list_for_course(code)]

    def download(self, material_id: int):
        material = self.repo.get(material_id)
        if not material:
            raise LookupError("Material not found")
        payload, _meta = blobs.read_blob(material.blob_id)
        return payload, material

    def delete(self, user: models.User, material_id: int) -> None:
        material = self.repo.get(material_id)
        if not material:
            raise LookupError("Material not found")
        if material.uploaded_by != user.sid and user.role != "admin":
            raise PermissionError("Only the uploader or an admin can delete this material")
        blobs.delete_blob(material.blob_id)
        self.repo.delete(material)


def group_request_out(r: models.GroupRequest) -> dict:
    return {
        "id": r.id,
        "sid": r.sid,
        "description": r.description,
        "email": r.email,
        "phone": r.phone,
        "major": r.major,
        "desiredGroupmates": r.desired_groupmates,
        "gpa": r.gpa,
        "dseScore": r.dse_score,
        "status": r.status,
        "created_at": r.created_at.isoformat() if r.created_at else None,
    }


class GroupService:
    """Study-group matchmaking: post a request, browse, invite by mail."""
    DEFAULT_INVITE = "I would like to form a study group with you!"

    def __init__(self, session: Session, outbox: Optional[MailOutbox] = None):
        self.session = session
        self.outbox = outbox
        self.repo = repositories.GroupRequestRepository(session)

    def list_active(self) -> List[dict]:
        return [group_request_out(r) for r in self.repo.list_active()]

    def create(self, user: models.User, payload: GroupRequestIn) -> models.GroupRequest:
        if self.repo.active_for(user.sid):
            raise ConflictError("You already have an active group request")
        return self.repo.create(models.GroupRequest(
            sid=user.sid,
            description=payload.description,
            email=payload.email or user.email,
            phone=payload.phone if payload.phone is not None else user.phone,
            major=payload.major,
            desired_groupmates=payload.desired_groupmates,
            gpa=payload.gpa,
            dse_score=payload.dse_score,
        ))

    def invite(self, user: models.User, request_id: int, message: str = "") -> models.GroupRequest:
        request = self.repo.get(request_id)
        if not request or request.status != "active":
            raise LookupError("Group request not found")
        if request.sid == user.sid:
            raise ValueError("You cannot invite yourself")
        _notify(
            self.outbox,
            request.email,
            "Study Group Invitation - EFS Platform",
            "<h2>Study Group Invitation</h2>"
            f"<p><strong>From:</strong> {user.sid} ({user.email})</p>"
            f"<p><strong>Major:</strong> {user.major or 'Not specified'}</p>"
            f"<p><strong>Phone:</strong> {user.phone or 'Not specified'}</p>"
            f"<p>{message.strip() or self.DEFAULT_INVITE}</p>",
        )
        logger.info("group invite sent request=%s from=%s", request.id, user.sid)
        return request

    def delete(self, user: models.User, request_id: int) -> None:
        request = self.repo.get(request_id)
        # someone else's request is reported as missing
        if not request or request.sid != user.sid:
            raise LookupError("Group request not found")
        self.repo.delete(request)


def profile_out(user: models.User) -> dict:
    """Public view of a user; never includes the password hash."""
    return {
        **user_out(user),
        "phone": user.phone,
        "major": user.major,
        "gpa": user.gpa,
        "dseScore": user.dse_score,
        "skills": [s for s in user.skills.split(",") if s] if user.skills else [],
        "yearOfStudy": user.year_of_study,
        "aboutMe": user.about_me,
    }


class ProfileService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.UserRepository(session)

    def update(self, user: models.User, payload: ProfileUpdateIn) -> models.User:
        changes = payload.model_dump(exclude_unset=True)
        email = changes.pop("email", None)
        if email and email != user.email:
            other = self.repo.get_by_email(email)
            if other and other.sid != user.sid:
                raise ConflictError("Email already in use")
            user.email = email
        if "skills" in changes:
            changes["skills"] = ",".join(changes["skills"] or [])
        for field, value in changes.items():
            if value is None and field not in ("gpa", "year_of_study"):
                value = ""
            setattr(user, field, value)
        return self.repo.save(user)

    def public_profile(self, sid: str) -> dict:
        user = self.repo.get_by_sid(sid)
        if not user:
            raise LookupError("User not found")
        return profile_out(user)


QUICK_ACTIONS = [
    {"key": "timetable", "title": "Timetable", "path": "/calendar", "admin": False},
    {"key": "group", "title": "Study groups", "path": "/group", "admin": False},
    {"key": "questionnaire", "title": "Questionnaires", "path": "/questionnaires", "admin": False},
    {"key": "materials", "title": "Materials", "path": "/materials", "admin": False},
    {"key": "admin", "title": "Admin panel", "path": "/admin", "admin": True},
]


def dashboard_summary(session: Session, user: models.User) -> dict:
    """Counts shown on the landing page of a signed-in user."""
    is_admin = user.role == "admin"
    stats = {
        "courses": repositories.CourseRepository(session).count_by_status("approved"),
        "myGroupRequests": repositories.GroupRequestRepository(session).count_for(user.sid),
        "myQuestionnaires": repositories.QuestionnaireRepository(session).count_by_creator(user.sid),
        "myMaterials": repositories.MaterialRepository(session).count_by_uploader(user.sid),
    }
    if is_admin:
        stats["pendingApprovals"] = repositories.PendingAccountRepository(session).count()
    return {
        "user": {
            "sid": user.sid,
            "email": user.email,
            "role": user.role,
            "credits": user.credits,
            "major": user.major or "Not specified",
            "yearOfStudy": user.year_of_study or "Not specified",
        },
        "stats": stats,
        "quickActions": [
            {k: v for k, v in a.items() if k != "admin"}
            for a in QUICK_ACTIONS if is_admin or not a["admin"]
        ],
    }
