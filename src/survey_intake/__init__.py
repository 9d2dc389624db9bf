"""survey_intake: session-scoped form/survey submission SDK.

Public API:
    SubmissionPipeline: CSRF, rate limit, session, validation, persistence
    SessionStore: session creation, lookup and one-shot completion
    SubmissionValidator: per-answer-type validation with sanitization
    UploadGuard: quota-checked, idempotent file uploads
    QuestionnaireStore: loads questionnaire YAML into typed models
    CsrfGuard: double-submit-cookie tokens
    SideEffectDispatcher: runs post-commit jobs in the background
    ClientCache: local 24h mirror of in-progress answers
    SubmissionClient: async HTTP client for the intake API

Backends (see ``interfaces``):
    RateLimiter: InMemoryRateLimiter, StorageRateLimiter
    ObjectStorage: SupabaseObjectStorage, NullObjectStorage
    Mailer: SmtpMailer
"""

from survey_intake.cache import ClientCache
from survey_intake.client import RemoteError, SubmissionClient
from survey_intake.csrf import CsrfGuard
from survey_intake.dispatcher import SideEffect, SideEffectDispatcher
from survey_intake.errors import (
    ConflictError,
    CsrfError,
    ExpiredError,
    FieldError,
    IntakeError,
    InternalError,
    NotFoundError,
    PayloadTooLargeError,
    RateLimitedError,
    ValidationError,
)
from survey_intake.interfaces import Mailer, ObjectStorage, RateLimiter
from survey_intake.notifications import SmtpMailer, SubmissionEffects
from survey_intake.pipeline import SubmissionPipeline, SubmissionState
from survey_intake.questionnaire import QuestionnaireStore
from survey_intake.rate_limit import (
    InMemoryRateLimiter,
    RateLimitResult,
    StorageRateLimiter,
    build_rate_limiter,
)
from survey_intake.sessions import SessionStore
from survey_intake.storage import NullObjectStorage, SupabaseObjectStorage
from survey_intake.uploads import (
    ANSWER_IMAGE_POLICY,
    CLIENT_UPLOAD_POLICY,
    UploadGuard,
    UploadPolicy,
)
from survey_intake.validator import SubmissionValidator

__all__ = [
    # Orchestration
    "SubmissionPipeline",
    "SubmissionState",
    "SessionStore",
    "SubmissionValidator",
    "UploadGuard",
    "UploadPolicy",
    "ANSWER_IMAGE_POLICY",
    "CLIENT_UPLOAD_POLICY",
    "QuestionnaireStore",
    "CsrfGuard",
    # Side effects
    "SideEffect",
    "SideEffectDispatcher",
    "SubmissionEffects",
    # Backends
    "RateLimiter",
    "RateLimitResult",
    "InMemoryRateLimiter",
    "StorageRateLimiter",
    "build_rate_limiter",
    "ObjectStorage",
    "SupabaseObjectStorage",
    "NullObjectStorage",
    "Mailer",
    "SmtpMailer",
    # Client side
    "ClientCache",
    "SubmissionClient",
    "RemoteError",
    # Errors
    "IntakeError",
    "FieldError",
    "ValidationError",
    "CsrfError",
    "NotFoundError",
    "ConflictError",
    "ExpiredError",
    "PayloadTooLargeError",
    "RateLimitedError",
    "InternalError",
]
