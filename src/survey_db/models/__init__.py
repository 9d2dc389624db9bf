"""ORM models for survey_db."""

from survey_db.models.answer import Answer
from survey_db.models.base import Base
from survey_db.models.consent import CookieConsent
from survey_db.models.enums import SessionKind, UploadKind
from survey_db.models.newsletter import NewsletterSubscriber
from survey_db.models.session import IntakeSession
from survey_db.models.session_cache import SessionCacheEntry
from survey_db.models.uploaded_file import UploadedFile

__all__ = [
    "Answer",
    "Base",
    "CookieConsent",
    "IntakeSession",
    "NewsletterSubscriber",
    "SessionCacheEntry",
    "SessionKind",
    "UploadKind",
    "UploadedFile",
]
