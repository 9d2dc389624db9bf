"""Request and result models for submissions and uploads.

Request models are what the HTTP layer parses from JSON bodies; result
models are what the pipeline hands back.  ``SubmissionContext`` carries
the request facts that never appear in the body (CSRF cookie/header, client
IP, route) so the pipeline itself stays framework-free.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Union

from pydantic import BaseModel, EmailStr, Field

from survey_db.models.enums import SessionKind
from survey_intake.models.answer import ValidatedAnswer

if TYPE_CHECKING:
    from survey_intake.dispatcher import SideEffect
    from survey_intake.rate_limit import RateLimitResult


# Raw answer values as received: text, a list of option values / URLs, or a number.
RawAnswerValue = Union[str, list[str], int, float, None]


class ResponseItem(BaseModel):
    question_id: str = Field(min_length=1, max_length=200)
    answer_value: RawAnswerValue = None


class SubmissionMetadata(BaseModel):
    user_agent: str | None = Field(default=None, max_length=1000)


class SubmissionRequest(BaseModel):
    """Body of ``POST /api/form/submit`` and ``POST /api/survey/submit``.

    ``session_id`` may be omitted on the form route, in which case a session
    is created inside the same request.  ``original_session_id`` links that
    new session to the form session it was shared from; it is ignored when
    ``session_id`` names an existing session.
    """

    session_id: uuid.UUID | None = None
    original_session_id: uuid.UUID | None = None
    responses: list[ResponseItem] = Field(min_length=1)
    metadata: SubmissionMetadata | None = None
    email: EmailStr | None = None
    newsletter_optin: bool = False
    locale: str | None = None


class CreateSessionRequest(BaseModel):
    locale: str | None = None
    # Survey only: the form session this survey follows up on
    original_session_id: uuid.UUID | None = None


class SessionInfo(BaseModel):
    """Public view of a session."""

    session_id: uuid.UUID
    kind: SessionKind
    questionnaire_id: str
    locale: str
    created_at: datetime
    expires_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_row(cls, row) -> SessionInfo:
        return cls(
            session_id=row.session_id,
            kind=SessionKind(row.kind),
            questionnaire_id=row.questionnaire_id,
            locale=row.locale,
            created_at=row.created_at,
            expires_at=row.expires_at,
            completed_at=row.completed_at,
        )


@dataclass
class SubmissionContext:
    """Per-request facts needed by the pipeline.

    ``route`` is part of the rate-limit key, so each endpoint gets its own
    budget per client.  ``rate_limit`` is filled in by the pipeline once the
    request has been counted, so the HTTP layer can emit the headers even
    when a later step fails.
    """

    route: str
    client_ip: str = "unknown"
    csrf_header: str | None = None
    csrf_cookie: str | None = None
    user_agent: str | None = None
    rate_limit: RateLimitResult | None = None

    @property
    def rate_limit_key(self) -> str:
        return f"{self.client_ip}:{self.route}"


@dataclass
class SubmissionOutcome:
    """What a successful :meth:`SubmissionPipeline.submit` returns.

    ``side_effects`` must be dispatched by the caller *after* the
    transaction has been committed.
    """

    session_id: uuid.UUID
    kind: SessionKind
    completed_at: datetime
    answers: list[ValidatedAnswer]
    created_session: bool = False
    rate_limit: RateLimitResult | None = None
    side_effects: list[SideEffect] = field(default_factory=list)


@dataclass(frozen=True)
class IncomingFile:
    """An uploaded file fully read into memory."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class UploadResult(BaseModel):
    success: bool = True
    file_url: str
    file_path: str
    file_size: int
    mime_type: str
    original_filename: str
    # True when the same content had already been stored for this session
    duplicate: bool = False


@dataclass
class UploadOutcome:
    result: UploadResult
    rate_limit: RateLimitResult | None = None
