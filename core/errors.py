"""
core/errors.py -- Error taxonomy shared by the auth gates and blog handlers.

Every error carries a machine-readable code (used in the JSON error envelope),
a human-readable message (flashed on the next rendered page) and an optional
redirect target chosen by whoever raised it. api/main.py owns the single
exception handler that turns these into responses.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/ or blog/.
"""

from __future__ import annotations


class ScribeError(Exception):
    """Base class for expected, user-facing failures."""

    code = "error"
    status_code = 400
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, redirect_to: str | None = None) -> None:
        self.message = message or self.default_message
        self.redirect_to = redirect_to
        super().__init__(self.message)


class ValidationError(ScribeError):
    """One or more field constraints were violated.

    messages keeps the per-field messages; message is all of them joined so
    the flash line reads as one sentence group.
    """

    code = "validation_error"
    status_code = 400
    default_message = "Invalid input."

    def __init__(self, messages: list[str] | str, redirect_to: str | None = None) -> None:
        if isinstance(messages, str):
            messages = [messages]
        self.messages = list(messages)
        super().__init__(" ".join(self.messages) or None, redirect_to=redirect_to)


class InvalidCredentials(ScribeError):
    """Login failed. The message never says whether the email or the password was wrong."""

    code = "bad_credentials"
    status_code = 401
    default_message = "Incorrect email or password."

    def __init__(self, redirect_to: str | None = None) -> None:
        super().__init__(redirect_to=redirect_to)


class Unauthorized(ScribeError):
    code = "unauthorized"
    status_code = 401
    default_message = "Please log in to access this page."


class Forbidden(ScribeError):
    code = "forbidden"
    status_code = 403
    default_message = "You are not authorized to perform this action."


class NotFound(ScribeError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."
