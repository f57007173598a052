"""Error taxonomy shared by the lending controller and its callers.

Every failure the controller can detect carries an ``ErrorKind`` (used by the
HTTP boundary to pick a status code) and a ``Reason`` (used by clients to tell
cases apart without parsing the message).
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID = "invalid"
    UNEXPECTED = "unexpected"


class Reason(str, Enum):
    BOOK_NOT_FOUND = "book_not_found"
    PERSON_NOT_FOUND = "person_not_found"
    CATEGORY_NOT_FOUND = "category_not_found"
    ALREADY_LENT = "already_lent"
    NOT_LENT = "not_lent"
    CURRENTLY_LENT = "currently_lent"
    HAS_ASSOCIATED_BOOKS = "has_associated_books"
    DUPLICATE_EMAIL = "duplicate_email"
    DUPLICATE_NAME = "duplicate_name"
    MISSING_FIELD = "missing_field"
    EMAIL_IMMUTABLE = "email_immutable"
    UNKNOWN_REFERENCE = "unknown_reference"
    MALFORMED_INPUT = "malformed_input"
    STORE_FAILURE = "store_failure"


class LibraryError(Exception):
    """Base exception for library errors."""

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, reason: Reason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "reason": self.reason.value, "message": self.message}


class NotFoundError(LibraryError):
    """A referenced id does not resolve to a record."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(LibraryError):
    """The record is not in a state that allows the operation."""

    kind = ErrorKind.CONFLICT


class InvalidError(LibraryError):
    """The request itself is wrong: missing or malformed input, or a bad reference."""

    kind = ErrorKind.INVALID


class UnexpectedError(LibraryError):
    """The store or the service failed; the caller did nothing wrong."""

    kind = ErrorKind.UNEXPECTED
