"""Intake error taxonomy.

Every failure the SDK reports to a caller is an :class:`IntakeError`
subclass carrying a machine-readable ``kind``, the HTTP ``status_code`` the
server should answer with, and a client-safe ``message``.  Backend detail
(SQL errors, storage responses) never goes into ``message``; it is logged
where the failure is caught and the caller sees a generic
:class:`InternalError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from survey_intake.rate_limit import RateLimitResult


@dataclass(frozen=True)
class FieldError:
    """One itemized validation failure."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class IntakeError(Exception):
    """Base class for all errors raised by the intake SDK."""

    kind: str = "internal_error"
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "kind": self.kind, "message": self.message}


class ValidationError(IntakeError):
    """Malformed or missing input; carries every violation, not just the first."""

    kind = "validation_error"
    status_code = 400
    default_message = "Validation failed"

    def __init__(
        self, errors: list[FieldError] | None = None, message: str | None = None,
    ) -> None:
        self.errors = list(errors or [])
        super().__init__(message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["errors"] = [e.to_dict() for e in self.errors]
        return body


class CsrfError(IntakeError):
    kind = "csrf_error"
    status_code = 403
    default_message = "Invalid or missing CSRF token"


class NotFoundError(IntakeError):
    kind = "not_found"
    status_code = 404
    default_message = "Session not found"


class ConflictError(IntakeError):
    kind = "conflict"
    status_code = 409
    default_message = "This session has already been completed"


class ExpiredError(IntakeError):
    kind = "expired"
    status_code = 410
    default_message = "Session expired"


class PayloadTooLargeError(IntakeError):
    kind = "payload_too_large"
    status_code = 413
    default_message = "Upload limit exceeded"


class RateLimitedError(IntakeError):
    """Caller must back off until the window in ``result`` resets."""

    kind = "rate_limited"
    status_code = 429
    default_message = "Rate limit exceeded. Please try again later."

    def __init__(self, result: RateLimitResult, message: str | None = None) -> None:
        self.result = result
        super().__init__(message)


class InternalError(IntakeError):
    """Persistence/storage failure, timeout, or schema inconsistency."""
