"""
blog/forms.py -- Pydantic models for the field constraints on submitted forms.

Each form model validates raw form strings and produces cleaned values.
Validators raise ValueError with the exact sentence the user should see;
validate() collects those sentences and re-raises them as one
core.errors.ValidationError so routes never see pydantic's error format.

Separation of concerns: these models are the input contract; blog/models.py
dataclasses are the domain truth. Services map between the two.
"""

import re
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from core.errors import ValidationError

TITLE_MAX = 200
CONTENT_MIN = 10
COMMENT_MAX = 1000
PASSWORD_MIN = 6
PASSWORD_MAX = 72  # bcrypt only looks at the first 72 bytes

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_-]{3,30}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

F = TypeVar("F", bound=BaseModel)


def validate(form_cls: type[F], redirect_to: str | None = None, **data) -> F:
    """Build form_cls from raw values, converting failures to ValidationError."""
    try:
        return form_cls(**data)
    except PydanticValidationError as exc:
        messages = []
        for err in exc.errors():
            ctx_error = (err.get("ctx") or {}).get("error")
            message = str(ctx_error) if ctx_error is not None else err["msg"]
            if message not in messages:
                messages.append(message)
        raise ValidationError(messages, redirect_to=redirect_to) from exc


class PostForm(BaseModel):
    model_config = ConfigDict(frozen=True, validate_default=True)

    title: str = ""
    content: str = ""

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Post title is required.")
        if len(v) > TITLE_MAX:
            raise ValueError(f"Title cannot exceed {TITLE_MAX} characters.")
        return v

    @field_validator("content")
    @classmethod
    def check_content(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Post content is required.")
        if len(v) < CONTENT_MIN:
            raise ValueError(f"Content must be at least {CONTENT_MIN} characters long.")
        return v


class CommentForm(BaseModel):
    model_config = ConfigDict(frozen=True, validate_default=True)

    text: str = ""

    @field_validator("text")
    @classmethod
    def check_text(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Comment cannot be empty.")
        if len(v) > COMMENT_MAX:
            raise ValueError(f"Comment cannot exceed {COMMENT_MAX} characters.")
        return v


class RegisterForm(BaseModel):
    """Registration fields. The password-match check runs only if every field passed."""

    model_config = ConfigDict(frozen=True, validate_default=True)

    username: str = ""
    email: str = ""
    password: str = ""
    confirm_password: str = ""

    @field_validator("username", "email", "password", "confirm_password", mode="before")
    @classmethod
    def required(cls, v):
        if v is None or not str(v).strip():
            raise ValueError("All fields are required.")
        return v

    @field_validator("username")
    @classmethod
    def check_username(cls, v: str) -> str:
        v = v.strip()
        if not _USERNAME_RE.match(v):
            raise ValueError("Username must be 3-30 characters: letters, digits, '_' or '-'.")
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        v = v.strip().lower()
        if len(v) > 255 or not _EMAIL_RE.match(v):
            raise ValueError("Please enter a valid email address.")
        return v

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        if len(v) < PASSWORD_MIN:
            raise ValueError(f"Password must be at least {PASSWORD_MIN} characters long.")
        if len(v.encode("utf-8")) > PASSWORD_MAX:
            raise ValueError(f"Password cannot exceed {PASSWORD_MAX} bytes.")
        return v

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterForm":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match.")
        return self
