"""SubmissionValidator: checks raw responses against a questionnaire.

Every answer is sanitized first, then coerced into one of the typed answer
models in :mod:`survey_intake.models.answer`.  All problems are collected
and reported together in a single :class:`ValidationError`, keyed by
question id.

Shape rules per ``answer_type``:

  - short_text, long_text: non-empty string after trimming
  - single_choice: one of the question's option values
  - multiple_choice, checklist: non-empty list of option values, kept in
    submission order
  - rating: a number within ``[min_value, max_value]``
  - image: non-empty list of non-empty URL strings

A non-required question may be left out (or answered with an empty value);
it is then not stored at all.
"""

from __future__ import annotations

import logging
import math
from typing import Never, NoReturn

from survey_intake.errors import FieldError, InternalError, ValidationError
from survey_intake.models.answer import (
    ImageAnswer,
    MultiChoiceAnswer,
    RatingAnswer,
    SingleChoiceAnswer,
    TextAnswer,
    ValidatedAnswer,
)
from survey_intake.models.question import AnswerType, Question, Questionnaire
from survey_intake.models.submission import RawAnswerValue, ResponseItem
from survey_intake.sanitize import sanitize_answer_value

logger = logging.getLogger(__name__)


class _ShapeError(Exception):
    """Raised by the per-type coercers; becomes one FieldError."""


def _unhandled_type(answer_type: Never) -> NoReturn:
    # Static exhaustiveness check: a new AnswerType member without a
    # ``case`` below makes this call a type error.
    logger.error("No validation rule for answer_type %r", answer_type)
    raise InternalError()


def _is_empty(value: RawAnswerValue) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list):
        return len(value) == 0
    return False


class SubmissionValidator:
    """Stateless; one instance can be shared by every request."""

    def validate(
        self,
        questionnaire: Questionnaire,
        responses: list[ResponseItem],
    ) -> list[ValidatedAnswer]:
        """Return typed answers in questionnaire display order.

        Raises:
            ValidationError: unknown or repeated question ids, missing
                required answers, or values of the wrong shape
            InternalError: the questionnaire declares a type with no rule
        """
        errors: list[FieldError] = []
        raw: dict[str, RawAnswerValue] = {}

        for item in responses:
            qid = item.question_id
            if questionnaire.get(qid) is None:
                errors.append(FieldError(qid, "Unknown question"))
                continue
            if qid in raw:
                errors.append(FieldError(qid, "Question answered more than once"))
                continue
            raw[qid] = sanitize_answer_value(item.answer_value)

        answers: list[ValidatedAnswer] = []
        for question in questionnaire.ordered():
            value = raw.get(question.id)
            if _is_empty(value):
                if question.required:
                    errors.append(FieldError(question.id, "This question is required"))
                continue
            try:
                answers.append(self.coerce(question, value))
            except _ShapeError as exc:
                errors.append(FieldError(question.id, str(exc)))

        if errors:
            logger.info(
                "Submission rejected for %s: %d invalid answers",
                questionnaire.id, len(errors),
            )
            raise ValidationError(errors)
        return answers

    def coerce(self, question: Question, value: RawAnswerValue) -> ValidatedAnswer:
        """Turn one non-empty raw value into its typed answer."""
        qid = question.id
        match question.answer_type:
            case AnswerType.SHORT_TEXT | AnswerType.LONG_TEXT:
                if not isinstance(value, str):
                    raise _ShapeError("Expected text")
                return TextAnswer(
                    question_id=qid,
                    answer_type=question.answer_type,
                    value=value.strip(),
                )
            case AnswerType.SINGLE_CHOICE:
                if not isinstance(value, str):
                    raise _ShapeError("Expected a single option")
                choice = value.strip()
                if choice not in question.option_values:
                    raise _ShapeError(f"Invalid option: {choice}")
                return SingleChoiceAnswer(
                    question_id=qid,
                    answer_type=question.answer_type,
                    value=choice,
                )
            case AnswerType.MULTIPLE_CHOICE | AnswerType.CHECKLIST:
                if not isinstance(value, list):
                    raise _ShapeError("Expected a list of options")
                invalid = [v for v in value if v not in question.option_values]
                if invalid:
                    shown = ", ".join(str(v) if v != "" else "(empty)" for v in invalid)
                    raise _ShapeError(f"Invalid options: {shown}")
                return MultiChoiceAnswer(
                    question_id=qid,
                    answer_type=question.answer_type,
                    value=list(value),
                )
            case AnswerType.RATING:
                return RatingAnswer(
                    question_id=qid,
                    answer_type=question.answer_type,
                    value=self._rating(question, value),
                )
            case AnswerType.IMAGE:
                if not isinstance(value, list) or not all(
                    isinstance(v, str) and v for v in value
                ):
                    raise _ShapeError("Expected a list of image URLs")
                return ImageAnswer(
                    question_id=qid,
                    answer_type=question.answer_type,
                    value=list(value),
                )
            case _:
                _unhandled_type(question.answer_type)

    @staticmethod
    def _rating(question: Question, value: RawAnswerValue) -> int | float:
        if isinstance(value, bool) or isinstance(value, list):
            raise _ShapeError("Expected a number")
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise _ShapeError("Expected a number") from None
        if not math.isfinite(number):
            raise _ShapeError("Expected a number")
        lo, hi = question.min_value, question.max_value
        if lo is not None and number < lo:
            raise _ShapeError(f"Rating must be at least {lo:g}")
        if hi is not None and number > hi:
            raise _ShapeError(f"Rating must be at most {hi:g}")
        return int(number) if number.is_integer() else number
