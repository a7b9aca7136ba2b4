"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
pending accounts, courses and their sessions, saved timetables,
questionnaires, materials). Repositories return SQLModel objects and
perform commits/refreshes where appropriate.
"""

from datetime import datetime, timezone
from typing import List, Optional
from sqlmodel import Session, select
from sqlalchemy import func, or_
from . import models
from .schemas import SessionRecord
from .utils.selection import SelectionBackend


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_email(self, email: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.email == email.strip().lower())
        return self.session.exec(stmt).first()

    def get_by_sid(self, sid: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.sid == sid)
        return self.session.exec(stmt).first()

    def exists(self, sid: str, email: str) -> bool:
        """Return True if a user with this sid or email already exists."""
        stmt = select(models.User.id).where(or_(models.User.sid == sid, models.User.email == email))
        return self.session.exec(stmt).first() is not None

    def list_all(self) -> List[models.User]:
        return self.session.exec(select(models.User).order_by(models.User.sid)).all()

    def save(self, user: models.User) -> models.User:
        user.updated_at = datetime.now(timezone.utc)
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user


class PendingAccountRepository:
    """Registrations waiting for approval."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, account: models.PendingAccount) -> models.PendingAccount:
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def exists(self, sid: str, email: str) -> bool:
        stmt = select(models.PendingAccount.id).where(
            or_(models.PendingAccount.sid == sid, models.PendingAccount.email == email)
        )
        return self.session.exec(stmt).first() is not None

    def get_by_sid(self, sid: str) -> Optional[models.PendingAccount]:
        stmt = select(models.PendingAccount).where(models.PendingAccount.sid == sid)
        return self.session.exec(stmt).first()

    def count(self) -> int:
        return self.session.exec(select(func.count()).select_from(models.PendingAccount)).one()

    def list_all(self) -> List[models.PendingAccount]:
        stmt = select(models.PendingAccount).order_by(models.PendingAccount.created_at.desc())
        return self.session.exec(stmt).all()

    def delete(self, account: models.PendingAccount) -> None:
        self.session.delete(account)
        self.session.commit()


class CourseRepository:
    """Courses and the session rows that make up their timetable."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, code: str, include_pending: bool = False) -> Optional[models.Course]:
        stmt = select(models.Course).where(models.Course.code == code.strip().upper())
        course = self.session.exec(stmt).first()
        if course and course.status != "approved" and not include_pending:
            return None
        return course

    def create(self, course: models.Course) -> models.Course:
        self.session.add(course)
        self.session.commit()
        self.session.refresh(course)
        return course

    def save(self, course: models.Course) -> models.Course:
        self.session.add(course)
        self.session.commit()
        self.session.refresh(course)
        return course

    def delete(self, course: models.Course) -> None:
        for s in self.list_session_rows(course.id):
            self.session.delete(s)
        self.session.delete(course)
        self.session.commit()

    def count_by_status(self, status: str = "approved") -> int:
        stmt = select(func.count()).select_from(models.Course).where(models.Course.status == status)
        return self.session.exec(stmt).one()

    def list_by_status(self, status: str = "approved") -> List[models.Course]:
        stmt = select(models.Course).where(models.Course.status == status).order_by(models.Course.code)
        return self.session.exec(stmt).all()

    def search(self, query: str, limit: int = 20) -> List[models.Course]:
        """Approved courses whose code starts with or whose title contains `query`."""
        q = query.strip()
        stmt = select(models.Course).where(
            models.Course.status == "approved",
            or_(
                models.Course.code.startswith(q.upper()),
                func.lower(models.Course.title).contains(q.lower()),
            ),
        ).order_by(models.Course.code).limit(limit)
        return self.session.exec(stmt).all()

    def list_session_rows(self, course_id: int) -> List[models.CourseSession]:
        stmt = select(models.CourseSession).where(models.CourseSession.course_id == course_id).order_by(models.CourseSession.id)
        return self.session.exec(stmt).all()

    def list_sessions(self, code: str) -> List[SessionRecord]:
        """Return the sessions of an approved course as `SessionRecord`s.

        An unknown course yields an empty list.
        """
        course = self.get(code)
        if not course:
            return []
        return self.sessions_of(course)

    def sessions_of(self, course: models.Course) -> List[SessionRecord]:
        return [_to_record(course, row) for row in self.list_session_rows(course.id)]

    def list_all_sessions(self) -> List[SessionRecord]:
        """Every session of every approved course that has a timetable."""
        stmt = (
            select(models.Course, models.CourseSession)
            .where(models.CourseSession.course_id == models.Course.id, models.Course.status == "approved")
            .order_by(models.Course.code, models.CourseSession.id)
        )
        return [_to_record(course, row) for course, row in self.session.exec(stmt).all()]

    def replace_sessions(self, course: models.Course, sessions: List[SessionRecord]) -> None:
        """Swap the whole timetable of `course` for `sessions`."""
        for row in self.list_session_rows(course.id):
            self.session.delete(row)
        for s in sessions:
            self.session.add(models.CourseSession(
                course_id=course.id,
                class_no=s.class_no,
                weekday=int(s.weekday),
                start_time=s.start_time,
                end_time=s.end_time,
                room=s.room,
            ))
        self.session.commit()


def _to_record(course: models.Course, row: models.CourseSession) -> SessionRecord:
    return SessionRecord(
        code=course.code,
        class_no=row.class_no,
        weekday=row.weekday,
        start_time=row.start_time,
        end_time=row.end_time,
        room=row.room,
        name=course.title,
    )


class TimetableRepository:
    """One saved selection document per user."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, sid: str) -> Optional[models.SavedTimetable]:
        stmt = select(models.SavedTimetable).where(models.SavedTimetable.sid == sid)
        return self.session.exec(stmt).first()

    def upsert(self, sid: str, document: str) -> models.SavedTimetable:
        existing = self.get(sid)
        if existing:
            existing.document = document
            existing.updated_at = datetime.now(timezone.utc)
            self.session.add(existing)
            self.session.commit()
            return existing
        row = models.SavedTimetable(sid=sid, document=document)
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def delete(self, sid: str) -> None:
        existing = self.get(sid)
        if existing:
            self.session.delete(existing)
            self.session.commit()


class DatabaseBackend(SelectionBackend):
    """Selection store slot kept in the `savedtimetable` table."""
    def __init__(self, session: Session, sid: str):
        self.repo = TimetableRepository(session)
        self.sid = sid

    def read(self) -> Optional[str]:
        row = self.repo.get(self.sid)
        return row.document if row else None

    def write(self, document: str) -> None:
        self.repo.upsert(self.sid, document)

    def clear(self) -> None:
        self.repo.delete(self.sid)


class QuestionnaireRepository:
    """Questionnaires and the record of who filled them."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, questionnaire_id: int) -> Optional[models.Questionnaire]:
        return self.session.get(models.Questionnaire, questionnaire_id)

    def list_active(self) -> List[models.Questionnaire]:
        stmt = select(models.Questionnaire).where(models.Questionnaire.status == "active").order_by(
            models.Questionnaire.created_at.desc(), models.Questionnaire.id.desc()
        )
        return self.session.exec(stmt).all()

    def list_by_creator(self, sid: str) -> List[models.Questionnaire]:
        stmt = select(models.Questionnaire).where(models.Questionnaire.creator_sid == sid).order_by(
            models.Questionnaire.created_at.desc(), models.Questionnaire.id.desc()
        )
        return self.session.exec(stmt).all()

    def active_for(self, sid: str) -> Optional[models.Questionnaire]:
        stmt = select(models.Questionnaire).where(
            models.Questionnaire.creator_sid == sid, models.Questionnaire.status == "active"
        )
        return self.session.exec(stmt).first()

    def has_filled(self, questionnaire_id: int, sid: str) -> bool:
        stmt = select(models.QuestionnaireFill.id).where(
            models.QuestionnaireFill.questionnaire_id == questionnaire_id,
            models.QuestionnaireFill.sid == sid,
        )
        return self.session.exec(stmt).first() is not None

    def count_by_creator(self, sid: str) -> int:
        stmt = select(func.count()).select_from(models.Questionnaire).where(models.Questionnaire.creator_sid == sid)
        return self.session.exec(stmt).one()

    def filled_by(self, questionnaire_id: int) -> List[str]:
        stmt = select(models.QuestionnaireFill.sid).where(models.QuestionnaireFill.questionnaire_id == questionnaire_id)
        return list(self.session.exec(stmt).all())


class MaterialRepository:
    """Learning materials attached to courses."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, material: models.Material) -> models.Material:
        self.session.add(material)
        self.session.commit()
        self.session.refresh(material)
        return material

    def get(self, material_id: int) -> Optional[models.Material]:
        return self.session.get(models.Material, material_id)

    def list_for_course(self, code: str) -> List[models.Material]:
        stmt = select(models.Material).where(models.Material.course_code == code.strip().upper()).order_by(
            models.Material.uploaded_at.desc(), models.Material.id.desc()
        )
        return self.session.exec(stmt).all()

    def count_by_uploader(self, sid: str) -> int:
        stmt = select(func.count()).select_from(models.Material).where(models.Material.uploaded_by == sid)
        return self.session.exec(stmt).one()

    def delete(self, material: models.Material) -> None:
        self.session.delete(material)
        self.session.commit()


class GroupRequestRepository:
    """Study-group requests."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, request: models.GroupRequest) -> models.GroupRequest:
        self.session.add(request)
        self.session.commit()
        self.session.refresh(request)
        return request

    def get(self, request_id: int) -> Optional[models.GroupRequest]:
        return self.session.get(models.GroupRequest, request_id)

    def list_active(self) -> List[models.GroupRequest]:
        stmt = select(models.GroupRequest).where(models.GroupRequest.status == "active").order_by(
            models.GroupRequest.created_at.desc(), models.GroupRequest.id.desc()
        )
        return self.session.exec(stmt).all()

    def active_for(self, sid: str) -> Optional[models.GroupRequest]:
        stmt = select(models.GroupRequest).where(
            models.GroupRequest.sid == sid, models.GroupRequest.status == "active"
        )
        return self.session.exec(stmt).first()

    def count_for(self, sid: str) -> int:
        stmt = select(func.count()).select_from(models.GroupRequest).where(models.GroupRequest.sid == sid)
        return self.session.exec(stmt).one()

    def delete(self, request: models.GroupRequest) -> None:
        self.session.delete(request)
        self.session.commit()
