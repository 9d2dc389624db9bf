"""Validated answers as a tagged union keyed by ``answer_type``.

Raw answers arrive loosely typed (string, list of strings, or number).  The
validator turns each one into exactly one of the classes below, so code
downstream of validation can rely on the value's shape.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from survey_intake.models.question import AnswerType


class _BaseAnswer(BaseModel):
    question_id: str

    def to_row(self) -> dict:
        """Column values for the ``answers`` table."""
        return {
            "question_id": self.question_id,
            "answer_type": self.answer_type.value,
            "answer_value": self.value,
        }


class TextAnswer(_BaseAnswer):
    answer_type: Literal[AnswerType.SHORT_TEXT, AnswerType.LONG_TEXT]
    value: str


class SingleChoiceAnswer(_BaseAnswer):
    answer_type: Literal[AnswerType.SINGLE_CHOICE]
    value: str


class MultiChoiceAnswer(_BaseAnswer):
    # Order is the order the respondent submitted.
    answer_type: Literal[AnswerType.MULTIPLE_CHOICE, AnswerType.CHECKLIST]
    value: list[str]


class RatingAnswer(_BaseAnswer):
    answer_type: Literal[AnswerType.RATING]
    value: float | int


class ImageAnswer(_BaseAnswer):
    answer_type: Literal[AnswerType.IMAGE]
    value: list[str]


ValidatedAnswer = Annotated[
    Union[TextAnswer, SingleChoiceAnswer, MultiChoiceAnswer, RatingAnswer, ImageAnswer],
    Field(discriminator="answer_type"),
]
