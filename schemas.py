import html
from datetime import date, datetime
from enum import Enum
from typing import Any, List, Optional, Type, TypeVar

import bleach
import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

import errors

TITLE_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 10000

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

ModelT = TypeVar("ModelT", bound=BaseModel)


class CamelModel(BaseModel):
    """Wire models use camelCase (dueDate, originalName); snake_case is accepted too."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _sanitize(v: Optional[str]) -> Optional[str]:
    """
    Strip every HTML tag and attribute and keep the text as typed.

    bleach entity-encodes the text it keeps, which is decoded again here; the
    loop repeats until nothing changes so that encoded markup such as
    ``&lt;b&gt;`` cannot come back as a tag.
    """
    while v:
        cleaned = html.unescape(bleach.clean(v, tags=set(), attributes={}, strip=True))
        if cleaned == v:
            break
        v = cleaned
    return v


def _check_length(v: Optional[str], limit: int) -> Optional[str]:
    if v is not None and len(v) > limit:
        raise ValueError(f"must be at most {limit} characters")
    return v


def _empty_date_to_none(v: Any) -> Any:
    if isinstance(v, str) and v.strip() == "":
        return None
    return v


def format_validation_errors(items: List[dict]) -> str:
    messages = []
    for item in items:
        loc = [str(part) for part in item.get("loc", ()) if part not in ("body", "query", "path")]
        field = loc[-1] if loc else None
        msg = item.get("msg", "Invalid value")
        messages.append(f"{field}: {msg}" if field else msg)
    return "; ".join(messages) or "Invalid input"


def parse_payload(model: Type[ModelT], data: Any) -> ModelT:
    """Validate a loose payload (socket event data) into ``model``."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise errors.ValidationError("Payload must be an object")
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        raise errors.ValidationError(format_validation_errors(exc.errors())) from exc


# --- Auth Models ---
class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: str = Field(max_length=100, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str


# --- Task Models ---
class TaskStatus(str, Enum):
    pending = "pending"
    in_progress = "in-progress"
    completed = "completed"


class TaskCreate(CamelModel):
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.pending
    due_date: Optional[date] = None

    # Limits apply to the stored (sanitised) text.
    @field_validator("title")
    @classmethod
    def clean_title(cls, v: str) -> str:
        v = _sanitize(v)
        if not v.strip():
            raise ValueError("Title is required")
        return _check_length(v, TITLE_MAX_LENGTH)

    @field_validator("description")
    @classmethod
    def clean_description(cls, v: Optional[str]) -> Optional[str]:
        return _check_length(_sanitize(v), DESCRIPTION_MAX_LENGTH)

    @field_validator("due_date", mode="before")
    @classmethod
    def empty_due_date(cls, v: Any) -> Any:
        return _empty_date_to_none(v)


class TaskUpdate(CamelModel):
    """
    Partial update. Only fields present in the payload are applied
    (``model_fields_set``); ``description`` and ``dueDate`` may be cleared
    with null, ``title`` and ``status`` may not.
    """
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[date] = None

    @field_validator("title")
    @classmethod
    def clean_title(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = _sanitize(v)
        if not v.strip():
            raise ValueError("Title is required")
        return _check_length(v, TITLE_MAX_LENGTH)

    @field_validator("description")
    @classmethod
    def clean_description(cls, v: Optional[str]) -> Optional[str]:
        return _check_length(_sanitize(v), DESCRIPTION_MAX_LENGTH)

    @field_validator("due_date", mode="before")
    @classmethod
    def empty_due_date(cls, v: Any) -> Any:
        return _empty_date_to_none(v)

    @model_validator(mode="after")
    def required_fields_not_cleared(self) -> "TaskUpdate":
        for name in ("title", "status"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self

    def changes(self) -> dict:
        values = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if isinstance(value, TaskStatus):
                value = value.value
            values[name] = value
        return values


class AttachmentOut(CamelModel):
    id: int
    filename: str
    original_name: str
    url: str
    uploaded_at: datetime


class Task(CamelModel):
    id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    due_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime
    attachments: List[AttachmentOut] = []
