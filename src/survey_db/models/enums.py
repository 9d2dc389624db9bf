"""Database-level enumerations for intake sessions and uploads."""

import enum


class SessionKind(str, enum.Enum):
    """Kind of questionnaire a session answers.

    A ``form`` is the contact/satisfaction form and may be submitted without
    a pre-created session.  A ``survey`` is a follow-up questionnaire whose
    session is always created up front, optionally linked back to the form
    session through ``original_session_id``.
    """

    FORM = "form"
    SURVEY = "survey"


class UploadKind(str, enum.Enum):
    """Upload context; each kind has its own quota accounting."""

    ANSWER_IMAGE = "answer_image"
    CLIENT_UPLOAD = "client_upload"
