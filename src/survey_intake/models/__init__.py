"""Public model re-exports for survey_intake.

Consumers should import from ``survey_intake.models`` rather than reaching
into sub-modules directly.
"""

# --- Questions ---
from survey_intake.models.question import (
    CHOICE_TYPES,
    AnswerType,
    LocalizedOption,
    LocalizedQuestion,
    LocalizedText,
    Question,
    QuestionOption,
    Questionnaire,
    pick_locale,
)

# --- Answers ---
from survey_intake.models.answer import (
    ImageAnswer,
    MultiChoiceAnswer,
    RatingAnswer,
    SingleChoiceAnswer,
    TextAnswer,
    ValidatedAnswer,
)

# --- Submissions / uploads ---
from survey_intake.models.submission import (
    CreateSessionRequest,
    IncomingFile,
    RawAnswerValue,
    ResponseItem,
    SessionInfo,
    SubmissionContext,
    SubmissionMetadata,
    SubmissionOutcome,
    SubmissionRequest,
    UploadOutcome,
    UploadResult,
)

__all__ = [
    # Questions
    "CHOICE_TYPES",
    "AnswerType",
    "LocalizedOption",
    "LocalizedQuestion",
    "LocalizedText",
    "Question",
    "QuestionOption",
    "Questionnaire",
    "pick_locale",
    # Answers
    "ImageAnswer",
    "MultiChoiceAnswer",
    "RatingAnswer",
    "SingleChoiceAnswer",
    "TextAnswer",
    "ValidatedAnswer",
    # Submissions
    "CreateSessionRequest",
    "IncomingFile",
    "RawAnswerValue",
    "ResponseItem",
    "SessionInfo",
    "SubmissionContext",
    "SubmissionMetadata",
    "SubmissionOutcome",
    "SubmissionRequest",
    "UploadOutcome",
    "UploadResult",
]
