"""SubmissionValidator tests against a hand-built questionnaire.

Test scenarios:
  - Each answer type: accepted shapes and rejected shapes
  - Required questions missing or blank are itemized
  - Unknown and repeated question ids are rejected
  - All errors are reported together, keyed by question id
  - Multiple-choice answers keep submission order
  - Optional questions left empty are not stored
  - Text is sanitized before it is stored
  - An option that sanitizes to nothing is rejected, not silently dropped
  - A question type without a rule is an internal error
"""

import pytest

from survey_db.models.enums import SessionKind
from survey_intake.errors import InternalError, ValidationError
from survey_intake.models.answer import (
    ImageAnswer,
    MultiChoiceAnswer,
    RatingAnswer,
    SingleChoiceAnswer,
    TextAnswer,
)
from survey_intake.models.question import AnswerType, Question, Questionnaire
from survey_intake.models.submission import ResponseItem
from survey_intake.validator import SubmissionValidator


def _options(*values):
    return [
        {"value": v, "option_text": {"en": v.title()}, "display_order": i}
        for i, v in enumerate(values, start=1)
    ]


QUESTIONNAIRE = Questionnaire.model_validate({
    "id": "validator-test",
    "kind": "form",
    "questions": [
        {"id": "name", "text": {"en": "Name"}, "answer_type": "short_text",
         "required": True, "display_order": 1},
        {"id": "about", "text": {"en": "About"}, "answer_type": "long_text",
         "display_order": 2},
        {"id": "colour", "text": {"en": "Colour"}, "answer_type": "single_choice",
         "required": True, "display_order": 3, "options": _options("red", "green", "blue")},
        {"id": "pets", "text": {"en": "Pets"}, "answer_type": "multiple_choice",
         "display_order": 4, "options": _options("cat", "dog", "fish")},
        {"id": "checks", "text": {"en": "Checks"}, "answer_type": "checklist",
         "display_order": 5, "options": _options("a", "b")},
        {"id": "score", "text": {"en": "Score"}, "answer_type": "rating",
         "display_order": 6, "min_value": 1, "max_value": 5},
        {"id": "photos", "text": {"en": "Photos"}, "answer_type": "image",
         "display_order": 7},
    ],
})


@pytest.fixture
def validator():
    return SubmissionValidator()


def _responses(**answers):
    return [ResponseItem(question_id=k, answer_value=v) for k, v in answers.items()]


def _validate(validator, **answers):
    return validator.validate(QUESTIONNAIRE, _responses(**answers))


def _errors(exc_info):
    return {e.field: e.message for e in exc_info.value.errors}


# =====================================================================
# Happy path
# =====================================================================


class TestAccepted:

    def test_every_type(self, validator):
        answers = _validate(
            validator,
            photos=["https://storage.test/a.png"],
            score=4,
            checks=["b"],
            pets=["dog", "cat"],
            colour="green",
            about="  Lots to say  ",
            name="Ada",
        )
        by_id = {a.question_id: a for a in answers}
        assert [a.question_id for a in answers] == [
            "name", "about", "colour", "pets", "checks", "score", "photos",
        ], "Answers should come back in display order"
        assert isinstance(by_id["name"], TextAnswer)
        assert by_id["about"].value == "Lots to say"
        assert isinstance(by_id["colour"], SingleChoiceAnswer)
        assert isinstance(by_id["pets"], MultiChoiceAnswer)
        assert by_id["checks"].answer_type == AnswerType.CHECKLIST
        assert isinstance(by_id["score"], RatingAnswer)
        assert isinstance(by_id["photos"], ImageAnswer)

    def test_multiple_choice_keeps_submission_order(self, validator):
        answers = _validate(validator, name="Ada", colour="red", pets=["fish", "cat", "dog"])
        pets = next(a for a in answers if a.question_id == "pets")
        assert pets.value == ["fish", "cat", "dog"]
        assert pets.to_row() == {
            "question_id": "pets",
            "answer_type": "multiple_choice",
            "answer_value": ["fish", "cat", "dog"],
        }

    def test_empty_optional_answers_are_not_stored(self, validator):
        answers = _validate(validator, name="Ada", colour="red", about="   ", pets=[])
        assert {a.question_id for a in answers} == {"name", "colour"}

    def test_text_is_sanitized(self, validator):
        answers = _validate(validator, name="<b>Ada</b><script>x()</script>", colour="red")
        assert answers[0].value == "Ada"

    @pytest.mark.parametrize("raw, expected", [(1, 1), (5, 5), ("3", 3), (2.5, 2.5)])
    def test_rating_bounds_inclusive(self, validator, raw, expected):
        answers = _validate(validator, name="Ada", colour="red", score=raw)
        score = next(a for a in answers if a.question_id == "score")
        assert score.value == expected


# =====================================================================
# Rejections
# =====================================================================


class TestRejected:

    def test_required_missing_or_blank(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            _validate(validator, name="   ")
        errors = _errors(exc_info)
        assert errors == {
            "name": "This question is required",
            "colour": "This question is required",
        }

    def test_unknown_and_repeated_ids(self, validator):
        responses = _responses(name="Ada", colour="red", nope="x") + _responses(name="Bob")
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(QUESTIONNAIRE, responses)
        errors = _errors(exc_info)
        assert errors["nope"] == "Unknown question"
        assert errors["name"] == "Question answered more than once"

    def test_all_errors_reported_together(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            _validate(
                validator,
                name=["not", "text"],
                colour="purple",
                pets=["cat", "unicorn"],
                score=9,
                photos="x",
            )
        errors = _errors(exc_info)
        assert set(errors) == {"name", "colour", "pets", "score", "photos"}
        assert errors["colour"] == "Invalid option: purple"
        assert errors["pets"] == "Invalid options: unicorn"
        assert errors["score"] == "Rating must be at most 5"
        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize("raw", [0, 5.5, "abc", "nan", "inf", ["1"]])
    def test_rating_out_of_range_or_not_numeric(self, validator, raw):
        with pytest.raises(ValidationError) as exc_info:
            _validate(validator, name="Ada", colour="red", score=raw)
        assert "score" in _errors(exc_info)

    def test_single_choice_rejects_list(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            _validate(validator, name="Ada", colour=["red"])
        assert _errors(exc_info) == {"colour": "Expected a single option"}

    def test_multiple_choice_rejects_string(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            _validate(validator, name="Ada", colour="red", pets="cat")
        assert _errors(exc_info) == {"pets": "Expected a list of options"}

    def test_markup_only_option_is_rejected_not_dropped(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            _validate(validator, name="Ada", colour="red", pets=["cat", "<img src=x>"])
        assert _errors(exc_info) == {"pets": "Invalid options: (empty)"}

    def test_markup_only_feature_on_shipped_form(self, validator, store):
        responses = [
            ResponseItem(question_id="full_name", answer_value="Ada"),
            ResponseItem(question_id="project_type", answer_value="website"),
            ResponseItem(question_id="features", answer_value=["multilingual", "<img src=x>"]),
            ResponseItem(question_id="description", answer_value="Small site"),
        ]
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(store.active(SessionKind.FORM), responses)
        assert exc_info.value.status_code == 400
        assert set(_errors(exc_info)) == {"features"}


# =====================================================================
# Exhaustiveness
# =====================================================================


def test_type_without_rule_is_internal_error(validator):
    rogue = Question.model_construct(
        id="mystery", text={"en": "?"}, answer_type="signature",
        required=True, display_order=1, options=[],
    )
    with pytest.raises(InternalError):
        validator.coerce(rogue, "x")
