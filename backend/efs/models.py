"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
"""

from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, timezone
from typing import List


def _now():
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """An approved account.

    Fields:
    - `sid`: student id, unique
    - `email`: lower-cased login name, unique
    - `password_hash`: hashed password string (never store plaintext)
    - `role`: `user` or `admin`
    - `credits`: questionnaire credits, never negative
    - profile fields (`phone`, `major`, `gpa`, ...) are optional and shown
      on the public profile and in group invitations
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    sid: str = Field(index=True, nullable=False, unique=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    role: str = Field(default="user")
    credits: int = Field(default=0)
    photo_blob_id: Optional[str] = None
    phone: str = ""
    major: str = ""
    gpa: Optional[float] = None
    dse_score: str = ""
    skills: str = ""
    year_of_study: Optional[int] = None
    about_me: str = ""
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class PendingAccount(SQLModel, table=True):
    """A registration waiting for an administrator decision."""
    id: Optional[int] = Field(default=None, primary_key=True)
    sid: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    photo_blob_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)


class Course(SQLModel, table=True):
    """A catalog course. Requested courses stay `pending` until approved."""
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)
    title: str
    description: str = ""
    status: str = Field(default="approved", index=True)
    requested_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    sessions: List['CourseSession'] = Relationship(back_populates='course')


class CourseSession(SQLModel, table=True):
    """One weekly meeting of a class. `weekday` is Monday=0 .. Sunday=6."""
    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key='course.id', index=True)
    class_no: str = ""
    weekday: int
    start_time: str
    end_time: str
    room: str = ""
    course: Optional[Course] = Relationship(back_populates='sessions')


class SavedTimetable(SQLModel, table=True):
    """The exported selection document of one user."""
    id: Optional[int] = Field(default=None, primary_key=True)
    sid: str = Field(index=True, unique=True)
    document: str = "[]"
    updated_at: datetime = Field(default_factory=_now)


class Questionnaire(SQLModel, table=True):
    """A survey link posted in exchange for credits."""
    id: Optional[int] = Field(default=None, primary_key=True)
    creator_sid: str = Field(index=True)
    creator_email: str
    description: str
    link: str
    target_responses: int = 30
    current_responses: int = 0
    status: str = Field(default="active", index=True)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    fills: List['QuestionnaireFill'] = Relationship(back_populates='questionnaire')


class QuestionnaireFill(SQLModel, table=True):
    """Marks that `sid` has filled a questionnaire (and was paid for it)."""
    id: Optional[int] = Field(default=None, primary_key=True)
    questionnaire_id: int = Field(foreign_key='questionnaire.id', index=True)
    sid: str = Field(index=True)
    created_at: datetime = Field(default_factory=_now)
    questionnaire: Optional[Questionnaire] = Relationship(back_populates='fills')


class Material(SQLModel, table=True):
    """A learning material file attached to a course."""
    id: Optional[int] = Field(default=None, primary_key=True)
    course_code: str = Field(index=True)
    name: str
    description: str = ""
    blob_id: str
    size: int = 0
    content_type: str = "application/octet-stream"
    uploaded_by: str
    uploaded_at: datetime = Field(default_factory=_now)


class GroupRequest(SQLModel, table=True):
    """A student looking for study-group mates. One `active` request per student."""
    id: Optional[int] = Field(default=None, primary_key=True)
    sid: str = Field(index=True)
    description: str = ""
    email: str
    phone: str = ""
    major: str
    desired_groupmates: str = ""
    gpa: Optional[float] = None
    dse_score: str = ""
    status: str = Field(default="active", index=True)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
