"""SubmissionPipeline tests with mocked repositories, storage and clock.

Test scenarios:
  - Full flow: create session, submit, 200 with completed_at; resubmit is 409
  - Form submit without a session id creates one in the same request
  - Survey submit requires a session id; wrong-kind session is 404
  - Expired session is 410 even though it was never completed
  - CSRF failure is 403 and nothing is persisted or counted
  - Missing required answers are 400 listing every offending id
  - multiple_choice answers are persisted in submission order
  - Check ordering: 403 before 429, 429 before 400, session errors before 400
  - Answer persistence failure is a generic 500
  - Side effects are built but not run by the pipeline
  - Survey sessions can be linked to an existing form session
  - A form submit that creates its session carries original_session_id; unknown is 404
"""

import json
import uuid

import pytest

from survey_db.models.enums import SessionKind
from survey_intake.dispatcher import SideEffect
from survey_intake.errors import (
    ConflictError,
    CsrfError,
    ExpiredError,
    InternalError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from survey_intake.models.submission import SubmissionContext
from survey_intake.notifications import SubmissionEffects
from survey_intake.pipeline import SubmissionPipeline, parse_submission

from helpers.fakes import FakeMailer

FORM_ANSWERS = [
    {"question_id": "full_name", "answer_value": "Ada Lovelace"},
    {"question_id": "project_type", "answer_value": "eshop"},
    {"question_id": "features", "answer_value": ["booking", "multilingual"]},
    {"question_id": "description", "answer_value": "A shop for analytical engines."},
]

SURVEY_ANSWERS = [
    {"question_id": "overall", "answer_value": 5},
    {"question_id": "communication", "answer_value": 4},
    {"question_id": "recommend", "answer_value": "yes"},
]


def _body(session_id=None, responses=FORM_ANSWERS, **extra) -> dict:
    body = {"responses": responses, **extra}
    if session_id is not None:
        body["session_id"] = str(session_id)
    return body


async def _form_session(pipeline, mock_db, context):
    return await pipeline.create_session(mock_db, context, kind=SessionKind.FORM)


# =====================================================================
# Happy path and completion
# =====================================================================


class TestSubmit:

    @pytest.mark.asyncio
    async def test_submit_then_resubmit_is_conflict(
        self, pipeline, mock_db, context, answer_repo, session_repo,
    ):
        """Create, submit the full answer set, then resubmit the same payload."""
        row = await _form_session(pipeline, mock_db, context)
        outcome = await pipeline.submit(
            mock_db, _body(row.session_id), context, kind=SessionKind.FORM,
        )
        assert outcome.session_id == row.session_id
        assert outcome.completed_at is not None
        assert session_repo.sessions[row.session_id].completed_at == outcome.completed_at
        assert len(answer_repo.batches[row.session_id]) == 4

        with pytest.raises(ConflictError) as exc_info:
            await pipeline.submit(
                mock_db, _body(row.session_id), context, kind=SessionKind.FORM,
            )
        assert exc_info.value.status_code == 409
        assert len(answer_repo.batches) == 1, "No second answer batch"

    @pytest.mark.asyncio
    async def test_form_submit_creates_session(
        self, pipeline, mock_db, context, session_repo, answer_repo,
    ):
        outcome = await pipeline.submit(
            mock_db, _body(email="ada@example.com", newsletter_optin=True),
            context, kind=SessionKind.FORM, allow_create=True,
        )
        assert outcome.created_session
        row = session_repo.sessions[outcome.session_id]
        assert row.completed_at is not None
        assert row.email == "ada@example.com"
        assert row.newsletter_optin is True
        assert row.questionnaire_id == "project-form-v1"
        assert outcome.session_id in answer_repo.batches

    @pytest.mark.asyncio
    async def test_survey_requires_session_id(self, pipeline, mock_db, context):
        with pytest.raises(ValidationError) as exc_info:
            await pipeline.submit(
                mock_db, _body(responses=SURVEY_ANSWERS), context, kind=SessionKind.SURVEY,
            )
        assert exc_info.value.errors[0].field == "session_id"

    @pytest.mark.asyncio
    async def test_session_of_other_kind_is_not_found(self, pipeline, mock_db, context):
        row = await _form_session(pipeline, mock_db, context)
        with pytest.raises(NotFoundError):
            await pipeline.submit(
                mock_db, _body(row.session_id, responses=SURVEY_ANSWERS),
                context, kind=SessionKind.SURVEY,
            )

    @pytest.mark.asyncio
    async def test_survey_submit(self, pipeline, mock_db, context, answer_repo):
        row = await pipeline.create_session(mock_db, context, kind=SessionKind.SURVEY)
        outcome = await pipeline.submit(
            mock_db, _body(row.session_id, responses=SURVEY_ANSWERS),
            context, kind=SessionKind.SURVEY,
        )
        stored = {a["question_id"]: a for a in answer_repo.batches[outcome.session_id]}
        assert stored["overall"]["answer_value"] == 5
        assert stored["overall"]["answer_type"] == "rating"

    @pytest.mark.asyncio
    async def test_unknown_session_is_404(self, pipeline, mock_db, context):
        with pytest.raises(NotFoundError):
            await pipeline.submit(
                mock_db, _body(uuid.uuid4()), context, kind=SessionKind.FORM,
            )

    @pytest.mark.asyncio
    async def test_expired_session_is_410(
        self, pipeline, mock_db, context, clock, answer_repo, session_repo,
    ):
        row = await _form_session(pipeline, mock_db, context)
        clock.advance(hours=48, seconds=1)
        with pytest.raises(ExpiredError) as exc_info:
            await pipeline.submit(
                mock_db, _body(row.session_id), context, kind=SessionKind.FORM,
            )
        assert exc_info.value.status_code == 410
        assert session_repo.sessions[row.session_id].completed_at is None
        assert answer_repo.batches == {}

    @pytest.mark.asyncio
    async def test_multiple_choice_order_preserved(
        self, pipeline, mock_db, context, answer_repo,
    ):
        row = await _form_session(pipeline, mock_db, context)
        await pipeline.submit(mock_db, _body(row.session_id), context, kind=SessionKind.FORM)
        stored = {a["question_id"]: a for a in answer_repo.batches[row.session_id]}
        assert stored["features"]["answer_value"] == ["booking", "multilingual"]

    @pytest.mark.asyncio
    async def test_bytes_body_is_parsed(self, pipeline, mock_db, context):
        row = await _form_session(pipeline, mock_db, context)
        raw = json.dumps(_body(row.session_id)).encode()
        outcome = await pipeline.submit(mock_db, raw, context, kind=SessionKind.FORM)
        assert outcome.session_id == row.session_id


# =====================================================================
# Rejections
# =====================================================================


class TestRejections:

    @pytest.mark.asyncio
    async def test_csrf_failure_persists_nothing(
        self, pipeline, mock_db, context, session_repo, answer_repo, limiter,
    ):
        context.csrf_header = "b" * 64
        with pytest.raises(CsrfError):
            await pipeline.submit(
                mock_db, _body(), context, kind=SessionKind.FORM, allow_create=True,
            )
        assert session_repo.sessions == {}
        assert answer_repo.batches == {}
        assert len(limiter) == 0, "Rejected before the rate limiter counted it"

    @pytest.mark.asyncio
    async def test_missing_required_lists_every_id(
        self, pipeline, mock_db, context, session_repo, answer_repo,
    ):
        row = await _form_session(pipeline, mock_db, context)
        responses = [{"question_id": "company", "answer_value": "Analytical Ltd"}]
        with pytest.raises(ValidationError) as exc_info:
            await pipeline.submit(
                mock_db, _body(row.session_id, responses=responses),
                context, kind=SessionKind.FORM,
            )
        fields = {e.field for e in exc_info.value.errors}
        assert fields == {"full_name", "project_type", "features", "description"}
        assert session_repo.sessions[row.session_id].completed_at is None
        assert answer_repo.batches == {}

    @pytest.mark.asyncio
    async def test_schema_errors_are_400(self, pipeline, mock_db, context):
        with pytest.raises(ValidationError) as exc_info:
            await pipeline.submit(
                mock_db, {"responses": [], "email": "not-an-email"},
                context, kind=SessionKind.FORM,
            )
        fields = {e.field.split(".")[0] for e in exc_info.value.errors}
        assert fields == {"responses", "email"}

    def test_malformed_json(self):
        with pytest.raises(ValidationError):
            parse_submission(b"{not json")

    @pytest.mark.asyncio
    async def test_answer_write_failure_is_internal(
        self, pipeline, mock_db, context, answer_repo,
    ):
        answer_repo.fail = True
        row = await _form_session(pipeline, mock_db, context)
        with pytest.raises(InternalError) as exc_info:
            await pipeline.submit(mock_db, _body(row.session_id), context, kind=SessionKind.FORM)
        assert "deadlock" not in exc_info.value.message
        assert exc_info.value.status_code == 500


# =====================================================================
# Check ordering
# =====================================================================


class TestOrdering:

    async def _exhaust(self, pipeline, context):
        for _ in range(10):
            await pipeline.check_rate(context)

    @pytest.mark.asyncio
    async def test_csrf_before_rate_limit(self, pipeline, mock_db, context):
        await self._exhaust(pipeline, context)
        context.csrf_cookie = None
        with pytest.raises(CsrfError):
            await pipeline.submit(mock_db, b"garbage", context, kind=SessionKind.FORM)

    @pytest.mark.asyncio
    async def test_rate_limit_before_schema(self, pipeline, mock_db, context):
        await self._exhaust(pipeline, context)
        with pytest.raises(RateLimitedError) as exc_info:
            await pipeline.submit(mock_db, b"garbage", context, kind=SessionKind.FORM)
        assert exc_info.value.result.retry_after == 60
        assert context.rate_limit is exc_info.value.result

    @pytest.mark.asyncio
    async def test_session_state_before_answers(self, pipeline, mock_db, context):
        row = await _form_session(pipeline, mock_db, context)
        await pipeline.submit(mock_db, _body(row.session_id), context, kind=SessionKind.FORM)
        bad = [{"question_id": "nope", "answer_value": "x"}]
        with pytest.raises(ConflictError):
            await pipeline.submit(
                mock_db, _body(row.session_id, responses=bad), context, kind=SessionKind.FORM,
            )

    @pytest.mark.asyncio
    async def test_rate_limit_is_per_route(self, pipeline, mock_db, context):
        await self._exhaust(pipeline, context)
        other = SubmissionContext(
            route="/api/survey/submit", client_ip=context.client_ip,
            csrf_header=context.csrf_header, csrf_cookie=context.csrf_cookie,
        )
        row = await pipeline.create_session(mock_db, other, kind=SessionKind.SURVEY)
        outcome = await pipeline.submit(
            mock_db, _body(row.session_id, responses=SURVEY_ANSWERS),
            other, kind=SessionKind.SURVEY,
        )
        assert outcome.rate_limit.remaining == 8


# =====================================================================
# Session linking and side effects
# =====================================================================


class TestLinkingAndEffects:

    @pytest.mark.asyncio
    async def test_survey_linked_to_form(self, pipeline, mock_db, context):
        form = await _form_session(pipeline, mock_db, context)
        survey = await pipeline.create_session(
            mock_db, context, kind=SessionKind.SURVEY, original_session_id=form.session_id,
        )
        assert survey.original_session_id == form.session_id

    @pytest.mark.asyncio
    async def test_survey_link_must_be_a_form(self, pipeline, mock_db, context):
        with pytest.raises(NotFoundError):
            await pipeline.create_session(
                mock_db, context, kind=SessionKind.SURVEY, original_session_id=uuid.uuid4(),
            )

    @pytest.mark.asyncio
    async def test_form_submit_links_shared_session(
        self, pipeline, mock_db, context, session_repo,
    ):
        shared = await _form_session(pipeline, mock_db, context)
        outcome = await pipeline.submit(
            mock_db, _body(original_session_id=str(shared.session_id)), context,
            kind=SessionKind.FORM, allow_create=True,
        )
        assert outcome.created_session is True
        row = session_repo.sessions[outcome.session_id]
        assert row.original_session_id == shared.session_id

    @pytest.mark.asyncio
    async def test_form_submit_unknown_original_is_404(
        self, pipeline, mock_db, context, session_repo, answer_repo,
    ):
        with pytest.raises(NotFoundError):
            await pipeline.submit(
                mock_db, _body(original_session_id=str(uuid.uuid4())), context,
                kind=SessionKind.FORM, allow_create=True,
            )
        assert session_repo.sessions == {}
        assert answer_repo.batches == {}

    @pytest.mark.asyncio
    async def test_locale_resolved_on_create(self, pipeline, mock_db, context):
        row = await pipeline.create_session(
            mock_db, context, kind=SessionKind.FORM, locale="de-AT",
        )
        assert row.locale == "de"
        row = await pipeline.create_session(
            mock_db, context, kind=SessionKind.FORM, locale="xx",
        )
        assert row.locale == "en"

    @pytest.mark.asyncio
    async def test_side_effects_returned_not_run(
        self, store, sessions, limiter, answer_repo, mock_db, context,
    ):
        mailer = FakeMailer()
        pipeline = SubmissionPipeline(
            store, sessions=sessions, rate_limiter=limiter, answer_repo=answer_repo,
            effects=SubmissionEffects(mailer=mailer, admin_email="admin@example.com"),
        )
        outcome = await pipeline.submit(
            mock_db, _body(), context, kind=SessionKind.FORM, allow_create=True,
        )
        assert [e.name for e in outcome.side_effects] == [
            f"admin-notification:{outcome.session_id}",
        ]
        assert all(isinstance(e, SideEffect) for e in outcome.side_effects)
        assert mailer.sent == [], "The caller runs side effects after commit"

        await outcome.side_effects[0].run()
        assert mailer.sent[0]["to"] == "admin@example.com"
