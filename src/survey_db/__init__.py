"""survey_db: PostgreSQL persistence layer for form/survey intake.

This package provides the ORM models, async engine factory, and repositories
for sessions, answers, uploaded files, newsletter subscribers, cookie
consents, and the session cache.  It is consumed by the ``survey_intake``
SDK and the FastAPI server.
"""

from survey_db.engine import get_engine, get_session_factory
from survey_db.models.enums import SessionKind, UploadKind
from survey_db.models.session import IntakeSession
from survey_db.repository import (
    AnswerRepository,
    ConsentRepository,
    NewsletterRepository,
    SessionCacheRepository,
    SessionRepository,
    UploadRepository,
)

__all__ = [
    "IntakeSession",
    "SessionKind",
    "UploadKind",
    "get_engine",
    "get_session_factory",
    "AnswerRepository",
    "ConsentRepository",
    "NewsletterRepository",
    "SessionCacheRepository",
    "SessionRepository",
    "UploadRepository",
]
