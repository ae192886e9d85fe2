"""
Taskboard Validation — pydantic payload schemas for the stores.

Every create/update payload is validated here before any mutation is
attempted. pydantic's ValidationError is converted into a single
ValidationFailedError carrying one {"path", "message"} entry per violation,
with the path matching the offending input key ("title", "tags.1", ...).

Payload keys are snake_case. Unknown keys are ignored.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic_core import PydanticCustomError

from taskboard.db.base import ensure_utc
from taskboard.db.models import TASK_PRIORITIES, TASK_STATUSES
from taskboard.engine.context import ROLES
from taskboard.engine.errors import ValidationFailedError

M = TypeVar("M", bound=BaseModel)

TITLE_MIN_LENGTH = 3
DEFAULT_PASSWORD_MIN_LENGTH = 6

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_FIELD_LABELS = {
    "title": "Title",
    "name": "Name",
    "email": "Email",
    "password": "Password",
    "status": "Status",
    "priority": "Priority",
    "due_date": "Due date",
    "assigned_to": "Assignee",
    "start": "Start",
    "end": "End",
}


# ---------------------------------------------------------------------------
# Field checks
# ---------------------------------------------------------------------------

def _required(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise PydanticCustomError("required", "{label} is required", {"label": _FIELD_LABELS[field]})
    return value.strip()


def _check_title(value: Optional[str]) -> str:
    value = _required(value, "title")
    if len(value) < TITLE_MIN_LENGTH:
        raise PydanticCustomError(
            "title_too_short",
            "Title must be at least {min} characters",
            {"min": TITLE_MIN_LENGTH},
        )
    return value


def _check_choice(value: Optional[str], field: str, choices: tuple) -> str:
    if value not in choices:
        raise PydanticCustomError(
            f"invalid_{field}",
            "{label} must be one of: {choices}",
            {"label": _FIELD_LABELS.get(field, field.capitalize()), "choices": ", ".join(choices)},
        )
    return value


def _check_tag(value: str) -> str:
    value = value.strip()
    if not value:
        raise PydanticCustomError("empty_tag", "Tags must be non-empty strings")
    return value


def _check_email(value: Optional[str]) -> str:
    value = _required(value, "email").lower()
    if not _EMAIL_RE.match(value):
        raise PydanticCustomError("invalid_email", "Email must be a valid email address")
    return value


def _check_password(value: Optional[str], info: ValidationInfo) -> str:
    if not value:
        raise PydanticCustomError("required", "Password is required")
    min_length = (info.context or {}).get("password_min_length", DEFAULT_PASSWORD_MIN_LENGTH)
    if len(value) < min_length:
        raise PydanticCustomError(
            "password_too_short",
            "Password must be at least {min} characters",
            {"min": min_length},
        )
    return value


Tag = Annotated[str, AfterValidator(_check_tag)]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TaskCreate(_Payload):
    title: Optional[str]
    description: Optional[str] = None
    status: Optional[str] = "todo"
    priority: Optional[str] = "low"
    tags: List[Tag] = []
    due_date: Optional[datetime] = None
    project_id: Optional[str] = None
    assigned_to: Optional[str] = None

    @field_validator("title")
    @classmethod
    def check_title(cls, v: Optional[str]) -> str:
        return _check_title(v)

    @field_validator("status")
    @classmethod
    def check_status(cls, v: Optional[str]) -> str:
        return _check_choice(v, "status", TASK_STATUSES)

    @field_validator("priority")
    @classmethod
    def check_priority(cls, v: Optional[str]) -> str:
        return _check_choice(v, "priority", TASK_PRIORITIES)

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class TaskUpdate(_Payload):
    """Partial update. Only keys present in the payload are applied."""

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    tags: Optional[List[Tag]] = None
    due_date: Optional[datetime] = None
    assigned_to: Optional[str] = None

    @field_validator("title")
    @classmethod
    def check_title(cls, v: Optional[str]) -> str:
        return _check_title(v)

    @field_validator("status")
    @classmethod
    def check_status(cls, v: Optional[str]) -> str:
        return _check_choice(v, "status", TASK_STATUSES)

    @field_validator("priority")
    @classmethod
    def check_priority(cls, v: Optional[str]) -> str:
        return _check_choice(v, "priority", TASK_PRIORITIES)

    @field_validator("tags")
    @classmethod
    def tags_not_null(cls, v: Optional[List[str]]) -> List[str]:
        if v is None:
            raise PydanticCustomError("tags_type", "Tags must be a list of strings")
        return v

    @field_validator("assigned_to")
    @classmethod
    def assignee_not_null(cls, v: Optional[str]) -> str:
        return _required(v, "assigned_to")

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class TaskStatusUpdate(_Payload):
    status: Optional[str]

    @field_validator("status")
    @classmethod
    def check_status(cls, v: Optional[str]) -> str:
        return _check_choice(v, "status", TASK_STATUSES)


class TaskFilters(_Payload):
    """
    List filters. Every absent filter is "no constraint"; status "all" is
    the same as no status filter.
    """

    status: Optional[str] = None
    priority: Optional[str] = None
    search: Optional[str] = None
    tag: Optional[str] = None
    assigned_to: Optional[str] = None
    project_id: Optional[str] = None

    @field_validator("status")
    @classmethod
    def status_filter(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v in ("", "all"):
            return None
        return _check_choice(v, "status", TASK_STATUSES)

    @field_validator("priority")
    @classmethod
    def priority_filter(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v in ("", "all"):
            return None
        return _check_choice(v, "priority", TASK_PRIORITIES)

    @field_validator("search", "tag", "assigned_to", "project_id")
    @classmethod
    def blank_is_absent(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()


class DateRange(_Payload):
    start: datetime
    end: datetime
    project_id: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def end_after_start(self) -> "DateRange":
        if self.end <= self.start:
            raise PydanticCustomError("invalid_range", "End must be after start")
        return self


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

class ProjectCreate(_Payload):
    title: Optional[str]
    description: Optional[str] = None
    team: List[str] = []

    @field_validator("title")
    @classmethod
    def title_required(cls, v: Optional[str]) -> str:
        return _required(v, "title")

    @field_validator("team")
    @classmethod
    def dedupe_team(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))


class ProjectUpdate(_Payload):
    title: Optional[str] = None
    description: Optional[str] = None
    team: Optional[List[str]] = None

    @field_validator("title")
    @classmethod
    def title_required(cls, v: Optional[str]) -> str:
        return _required(v, "title")

    @field_validator("team")
    @classmethod
    def dedupe_team(cls, v: Optional[List[str]]) -> List[str]:
        if v is None:
            raise PydanticCustomError("team_type", "Team must be a list of user ids")
        return list(dict.fromkeys(v))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class UserRegister(_Payload):
    name: Optional[str]
    email: Optional[str]
    password: Optional[str]
    avatar: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_required(cls, v: Optional[str]) -> str:
        return _required(v, "name")

    @field_validator("email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> str:
        return _check_email(v)

    @field_validator("password")
    @classmethod
    def check_password(cls, v: Optional[str], info: ValidationInfo) -> str:
        return _check_password(v, info)


class UserCreate(UserRegister):
    """Administrative creation with an explicit role."""

    role: Optional[str] = "member"

    @field_validator("role")
    @classmethod
    def valid_role(cls, v: Optional[str]) -> str:
        return _check_choice(v, "role", ROLES)


class ProfileUpdate(_Payload):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    avatar: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_required(cls, v: Optional[str]) -> str:
        return _required(v, "name")

    @field_validator("email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> str:
        return _check_email(v)

    @field_validator("password")
    @classmethod
    def check_password(cls, v: Optional[str], info: ValidationInfo) -> str:
        return _check_password(v, info)


class LoginRequest(_Payload):
    email: str = ""
    password: str = ""


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------

def _message(err: Dict[str, Any]) -> str:
    loc = err.get("loc") or ()
    field = str(loc[0]) if loc else ""
    label = _FIELD_LABELS.get(field, field.replace("_", " ").capitalize() or "Value")
    err_type = err.get("type", "")
    if err_type == "missing":
        return f"{label} is required"
    if err_type.startswith("datetime") or err_type.startswith("date_"):
        return f"{label} must be a valid date"
    if field in ("tags", "team") and len(loc) == 1 and err_type == "list_type":
        return f"{label} must be a list of strings"
    return err.get("msg", "Invalid value")


def to_validation_error(exc: ValidationError) -> ValidationFailedError:
    """One {"path", "message"} entry per violation, in pydantic's order."""
    errors = [
        {"path": ".".join(str(p) for p in err.get("loc") or ()), "message": _message(err)}
        for err in exc.errors()
    ]
    message = errors[0]["message"] if len(errors) == 1 else "Validation error"
    return ValidationFailedError(message, errors=errors)


def parse(
    model: Type[M],
    payload: Any,
    context: Optional[Dict[str, Any]] = None,
) -> M:
    """
    Validate `payload` against `model`.

    Raises:
        ValidationFailedError: payload is not a mapping or violates the model.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValidationFailedError.single("", "Request body must be an object")
    try:
        return model.model_validate(dict(payload), context=context)
    except ValidationError as e:
        raise to_validation_error(e) from e
