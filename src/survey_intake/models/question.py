"""Questionnaire and question models.

Questions are immutable content loaded from YAML.  Each question declares an
``answer_type`` which decides how its answer is validated and stored:

  - short_text / long_text: free text
  - single_choice: one option value
  - multiple_choice / checklist: one or more option values
  - rating: a number within ``[min_value, max_value]``
  - image: one or more URLs of previously uploaded images

Display text is localized: ``text``, ``description`` and each option's
``option_text`` map locale codes to strings, with ``en`` as the fallback.
"""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from survey_db.models.enums import SessionKind

LocalizedText = dict[str, str]

FALLBACK_LOCALE = "en"


def pick_locale(text: LocalizedText | None, locale: str) -> str | None:
    """Return ``text[locale]``, falling back to English, then any value."""
    if not text:
        return None
    if locale in text:
        return text[locale]
    if FALLBACK_LOCALE in text:
        return text[FALLBACK_LOCALE]
    return next(iter(text.values()))


class AnswerType(str, enum.Enum):
    SHORT_TEXT = "short_text"
    LONG_TEXT = "long_text"
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    CHECKLIST = "checklist"
    RATING = "rating"
    IMAGE = "image"


CHOICE_TYPES: frozenset[AnswerType] = frozenset({
    AnswerType.SINGLE_CHOICE,
    AnswerType.MULTIPLE_CHOICE,
    AnswerType.CHECKLIST,
})


class QuestionOption(BaseModel):
    """A selectable option; ``value`` is what answers carry."""

    model_config = ConfigDict(frozen=True)

    value: str
    option_text: LocalizedText
    display_order: int = 0


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: LocalizedText
    description: LocalizedText | None = None
    answer_type: AnswerType
    required: bool = False
    display_order: int = 0
    options: list[QuestionOption] = Field(default_factory=list)
    # Only meaningful for rating questions
    min_value: float | None = None
    max_value: float | None = None

    @model_validator(mode="after")
    def _chk(self):
        if self.answer_type in CHOICE_TYPES and not self.options:
            raise ValueError(f"question {self.id}: choice questions need options")
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value >= self.max_value
        ):
            raise ValueError(f"question {self.id}: min_value must be < max_value")
        return self

    @property
    def option_values(self) -> set[str]:
        return {o.value for o in self.options}

    def sorted_options(self) -> list[QuestionOption]:
        return sorted(self.options, key=lambda o: o.display_order)


class Questionnaire(BaseModel):
    """An ordered question set of one kind."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: SessionKind
    active: bool = True
    questions: list[Question]

    @model_validator(mode="after")
    def _unique_ids(self):
        seen: set[str] = set()
        for q in self.questions:
            if q.id in seen:
                raise ValueError(f"questionnaire {self.id}: duplicate question id {q.id}")
            seen.add(q.id)
        return self

    def ordered(self) -> list[Question]:
        """Questions sorted by ``display_order`` (stable for ties)."""
        return sorted(self.questions, key=lambda q: q.display_order)

    def get(self, question_id: str) -> Question | None:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None


class LocalizedOption(BaseModel):
    value: str
    option_text: str
    display_order: int


class LocalizedQuestion(BaseModel):
    """Flattened, single-locale question for API consumers."""

    id: str
    question_text: str
    description: str | None = None
    answer_type: AnswerType
    required: bool
    display_order: int
    options: list[LocalizedOption] | None = None
    min_value: float | None = None
    max_value: float | None = None

    @classmethod
    def from_question(cls, q: Question, locale: str) -> LocalizedQuestion:
        options = None
        if q.options:
            options = [
                LocalizedOption(
                    value=o.value,
                    option_text=pick_locale(o.option_text, locale) or o.value,
                    display_order=o.display_order,
                )
                for o in q.sorted_options()
            ]
        return cls(
            id=q.id,
            question_text=pick_locale(q.text, locale) or q.id,
            description=pick_locale(q.description, locale),
            answer_type=q.answer_type,
            required=q.required,
            display_order=q.display_order,
            options=options,
            min_value=q.min_value,
            max_value=q.max_value,
        )
