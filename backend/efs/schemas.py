"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. `SessionRecord` is also the data contract
for course sessions everywhere in the timetable code: records coming from
the database, catalog files or API payloads are validated into it once,
at the boundary.
"""

import re
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import weekdays

_CODE_RE = re.compile(r"^[A-Z0-9]+$")


class SessionRecord(BaseModel):
    """One weekly meeting of one class of a course."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    code: str
    class_no: str = Field(default="", alias="classNo")
    weekday: weekdays.Weekday
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    room: str = ""
    name: str = ""

    @field_validator("code", mode="before")
    @classmethod
    def _normalize_code(cls, v):
        code = str(v or "").strip().upper()
        if not _CODE_RE.match(code):
            raise ValueError("course code must be alphanumeric")
        return code

    @field_validator("class_no", "room", "name", mode="before")
    @classmethod
    def _blank_if_missing(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("weekday", mode="before")
    @classmethod
    def _coerce_weekday(cls, v):
        return weekdays.coerce(v)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _strip_time(cls, v):
        # Malformed times are kept; the projector skips them.
        if not isinstance(v, str):
            raise ValueError("time must be a HH:MM string")
        return v.strip()


class RegisterIn(BaseModel):
    """Payload for account registration; the account waits for approval."""
    sid: str = Field(min_length=1, max_length=32)
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=1)
    photo_data: str = Field(alias="photoData", min_length=1)
    file_name: str = Field(default="student_card.jpg", alias="fileName")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("email")
    @classmethod
    def _email_shape(cls, v):
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("invalid email")
        return v

    @field_validator("sid")
    @classmethod
    def _strip_sid(cls, v):
        return v.strip()


class LoginIn(BaseModel):
    """Payload for the login endpoint."""
    email: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str


class CourseRequestIn(BaseModel):
    """A student's request to add a missing course to the catalog."""
    code: str
    title: str

    @field_validator("code")
    @classmethod
    def _upper_code(cls, v):
        v = v.strip().upper()
        if not _CODE_RE.match(v):
            raise ValueError("course code must be alphanumeric")
        return v

    @field_validator("title")
    @classmethod
    def _strip_title(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("title required")
        return v


class CourseUpdateIn(BaseModel):
    """Admin edit of a course; `timetable` replaces all sessions when given."""
    title: Optional[str] = None
    description: Optional[str] = None
    timetable: Optional[List[dict]] = None


class ClassSelectionIn(BaseModel):
    """Add one class of a course to the caller's timetable."""
    code: str
    class_no: str = Field(default="", alias="classNo")

    model_config = ConfigDict(populate_by_name=True)


class CreditsIn(BaseModel):
    credits: int = Field(ge=0)


class QuestionnaireIn(BaseModel):
    """Request format for posting a questionnaire."""
    description: str = Field(min_length=1)
    link: str = Field(min_length=1)
    target_responses: int = Field(default=30, ge=1, alias="targetResponses")

    model_config = ConfigDict(populate_by_name=True)


class GroupRequestIn(BaseModel):
    """Post a study-group request; contact details default to the profile."""
    major: str
    description: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    desired_groupmates: str = Field(default="", alias="desiredGroupmates")
    gpa: Optional[float] = Field(default=None, ge=0)
    dse_score: str = Field(default="", alias="dseScore")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("major")
    @classmethod
    def _major_required(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Major is required")
        return v

    @field_validator("email")
    @classmethod
    def _email_shape(cls, v):
        if v is None or not v.strip():
            return None
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("invalid email")
        return v


class GroupInviteIn(BaseModel):
    message: str = ""


class ProfileUpdateIn(BaseModel):
    """Partial profile update: only fields that are sent are changed.

    `skills` may be a list or a comma separated string.
    """
    email: Optional[str] = None
    phone: Optional[str] = None
    major: Optional[str] = None
    gpa: Optional[float] = Field(default=None, ge=0)
    dse_score: Optional[str] = None
    skills: Optional[Union[List[str], str]] = None
    year_of_study: Optional[int] = Field(default=None, ge=1, le=10)
    about_me: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _email_shape(cls, v):
        if v is None:
            return v
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("invalid email")
        return v

    @field_validator("skills")
    @classmethod
    def _split_skills(cls, v):
        if v is None:
            return v
        parts = v.split(",") if isinstance(v, str) else v
        return [str(p).strip() for p in parts if str(p).strip()]
