"""SubmissionPipeline: one HTTP submission, from request to committed answers.

States::

    RECEIVED -> CSRF_CHECKED -> RATE_CHECKED -> SESSION_RESOLVED
             -> VALIDATED -> PERSISTED -> COMPLETED

Any failure raises an :class:`~survey_intake.errors.IntakeError` and ends
the request; nothing is retried inside it.  The checks run cheapest-first,
so a request failing several of them gets 403 before 429, 429 before any
session error, and session errors before 400.

The pipeline never commits.  The caller owns the transaction: it commits
after :meth:`submit` returns and only then dispatches
``outcome.side_effects``.  Answers and the completion flag are written in
that one transaction, and completion is a conditional UPDATE, so two
concurrent submits for one session produce exactly one answer batch.

Typical usage (see ``survey_server.routes.submit``)::

    outcome = await pipeline.submit(db, request, context, kind=SessionKind.FORM)
    await db.commit()
    dispatcher.dispatch(outcome.side_effects)
"""

from __future__ import annotations

import enum
import logging
import uuid

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from survey_db.models.enums import SessionKind
from survey_db.models.session import IntakeSession
from survey_db.repository import AnswerRepository
from survey_intake.backend import backend_call
from survey_intake.csrf import CsrfGuard
from survey_intake.errors import (
    FieldError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from survey_intake.interfaces import RateLimiter
from survey_intake.models.question import AnswerType, Questionnaire
from survey_intake.models.submission import (
    IncomingFile,
    SubmissionContext,
    SubmissionOutcome,
    SubmissionRequest,
    UploadOutcome,
)
from survey_intake.notifications import SubmissionEffects
from survey_intake.questionnaire import QuestionnaireStore, resolve_locale
from survey_intake.rate_limit import RateLimitResult
from survey_intake.sessions import SessionStore
from survey_intake.uploads import UploadGuard, UploadPolicy
from survey_intake.validator import SubmissionValidator

logger = logging.getLogger(__name__)


class SubmissionState(str, enum.Enum):
    RECEIVED = "received"
    CSRF_CHECKED = "csrf_checked"
    RATE_CHECKED = "rate_checked"
    SESSION_RESOLVED = "session_resolved"
    VALIDATED = "validated"
    PERSISTED = "persisted"
    COMPLETED = "completed"


class SubmissionPipeline:
    """Orchestrates CSRF, rate limit, session, validation and persistence.

    Args:
        questionnaires: loaded questionnaire store
        sessions: session lifecycle (defaults to a DB-backed store)
        csrf: double-submit guard
        rate_limiter: optional; when ``None`` no request is throttled
        upload_guard: required for :meth:`upload`
        effects: builds post-commit side effects; none when ``None``
    """

    def __init__(
        self,
        questionnaires: QuestionnaireStore,
        *,
        sessions: SessionStore | None = None,
        validator: SubmissionValidator | None = None,
        csrf: CsrfGuard | None = None,
        rate_limiter: RateLimiter | None = None,
        upload_guard: UploadGuard | None = None,
        answer_repo: AnswerRepository | None = None,
        effects: SubmissionEffects | None = None,
    ) -> None:
        self.questionnaires = questionnaires
        self.sessions = sessions or SessionStore()
        self.validator = validator or SubmissionValidator()
        self.csrf = csrf or CsrfGuard()
        self.rate_limiter = rate_limiter
        self.upload_guard = upload_guard
        self._answers = answer_repo or AnswerRepository()
        self._effects = effects

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def check_rate(self, context: SubmissionContext) -> RateLimitResult | None:
        """Count the request against its client+route window."""
        if self.rate_limiter is None:
            return None
        result = await self.rate_limiter.check(context.rate_limit_key)
        context.rate_limit = result
        if not result.allowed:
            logger.warning("Rate limited %s", context.rate_limit_key)
            raise RateLimitedError(result)
        return result

    async def _guard(self, context: SubmissionContext, *, csrf: bool) -> RateLimitResult | None:
        if csrf:
            self.csrf.require(context.csrf_header, context.csrf_cookie)
        _trace(context, SubmissionState.CSRF_CHECKED)
        rate = await self.check_rate(context)
        _trace(context, SubmissionState.RATE_CHECKED)
        return rate

    # ------------------------------------------------------------------
    # Session creation
    # ------------------------------------------------------------------

    async def create_session(
        self,
        db: AsyncSession,
        context: SubmissionContext,
        *,
        kind: SessionKind,
        locale: str | None = None,
        original_session_id: uuid.UUID | None = None,
        check_csrf: bool = True,
    ) -> IntakeSession:
        """Open a session bound to the active questionnaire of ``kind``.

        A survey may reference the form session it follows up on; that
        session must exist and be a form.
        """
        await self._guard(context, csrf=check_csrf)
        if original_session_id is not None:
            await self.sessions.get(db, original_session_id, kind=SessionKind.FORM)
        questionnaire = self.questionnaires.active(kind)
        return await self.sessions.create(
            db,
            questionnaire_id=questionnaire.id,
            kind=kind,
            locale=resolve_locale(locale),
            client_ip=context.client_ip,
            user_agent=context.user_agent,
            original_session_id=original_session_id,
        )

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit(
        self,
        db: AsyncSession,
        payload: SubmissionRequest | dict | bytes,
        context: SubmissionContext,
        *,
        kind: SessionKind,
        allow_create: bool = False,
    ) -> SubmissionOutcome:
        """Validate and persist one answer batch, completing the session.

        Args:
            payload: the request body, parsed here so that CSRF and rate
                limiting apply even to malformed bodies
            allow_create: when true and ``request.session_id`` is absent, a
                session is created in the same transaction (form route)

        Raises:
            CsrfError, RateLimitedError, NotFoundError, ExpiredError,
            ConflictError, ValidationError, InternalError
        """
        _trace(context, SubmissionState.RECEIVED)
        rate = await self._guard(context, csrf=True)
        request = parse_submission(payload)

        user_agent = (
            request.metadata.user_agent if request.metadata and request.metadata.user_agent
            else context.user_agent
        )
        created = False
        if request.session_id is not None:
            row = await self.sessions.get(db, request.session_id, kind=kind)
            self.sessions.assert_open(row)
            questionnaire = self.questionnaires.get(row.questionnaire_id)
        elif allow_create:
            if request.original_session_id is not None:
                await self.sessions.get(db, request.original_session_id, kind=SessionKind.FORM)
            questionnaire = self.questionnaires.active(kind)
            row = await self.sessions.create(
                db,
                questionnaire_id=questionnaire.id,
                kind=kind,
                locale=resolve_locale(request.locale),
                client_ip=context.client_ip,
                user_agent=user_agent,
                email=request.email,
                newsletter_optin=request.newsletter_optin,
                original_session_id=request.original_session_id,
            )
            created = True
        else:
            raise ValidationError([FieldError("session_id", "Session id is required")])
        session_id = row.session_id
        _trace(context, SubmissionState.SESSION_RESOLVED, session_id)

        answers = self.validator.validate(questionnaire, request.responses)
        _trace(context, SubmissionState.VALIDATED, session_id)

        # Claim completion first: the losing request of a concurrent pair
        # fails here, before writing any answers.
        extra = {}
        if request.email is not None:
            extra["email"] = request.email
        if request.newsletter_optin:
            extra["newsletter_optin"] = True
        completed_at = await self.sessions.complete(db, session_id, **extra)

        async with backend_call("insert answers", session_id=session_id):
            await self._answers.insert_batch(
                db, session_id, [a.to_row() for a in answers],
            )
        _trace(context, SubmissionState.PERSISTED, session_id)

        side_effects = []
        if self._effects is not None:
            side_effects = self._effects.for_submission(
                questionnaire=questionnaire,
                session_id=session_id,
                kind=kind,
                locale=row.locale,
                completed_at=completed_at,
                answers=answers,
                email=request.email or row.email,
                newsletter_optin=request.newsletter_optin or row.newsletter_optin,
            )
        _trace(context, SubmissionState.COMPLETED, session_id)
        logger.info(
            "Accepted %s submission %s: %d answers", kind.value, session_id, len(answers),
        )
        return SubmissionOutcome(
            session_id=session_id,
            kind=kind,
            completed_at=completed_at,
            answers=answers,
            created_session=created,
            rate_limit=rate,
            side_effects=side_effects,
        )

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        db: AsyncSession,
        context: SubmissionContext,
        *,
        session_id: uuid.UUID | str | None,
        file: IncomingFile | None,
        policy: UploadPolicy,
        question_id: str | None = None,
    ) -> UploadOutcome:
        """Attach a file to an open session.

        Form fields arrive unchecked and are validated after the CSRF and
        rate checks.  For answer images ``question_id`` must name an
        ``image`` question of the session's questionnaire.
        """
        if self.upload_guard is None:
            raise RuntimeError("SubmissionPipeline.upload needs an UploadGuard")
        rate = await self._guard(context, csrf=policy.requires_csrf)

        errors = []
        sid = _parse_uuid(session_id)
        if sid is None:
            errors.append(FieldError("session_id", "A valid session id is required"))
        if file is None:
            errors.append(FieldError("file", "No file provided"))
        if errors:
            raise ValidationError(errors)

        row = await self.sessions.get(db, sid)
        self.sessions.assert_open(row)
        if policy.requires_question:
            _require_image_question(self.questionnaires.get(row.questionnaire_id), question_id)

        result = await self.upload_guard.accept(
            db,
            session_id=sid,
            file=file,
            policy=policy,
            question_id=question_id,
        )
        return UploadOutcome(result=result, rate_limit=rate)


def _require_image_question(questionnaire: Questionnaire, question_id: str | None) -> None:
    if not question_id:
        raise ValidationError([FieldError("question_id", "Question id is required")])
    question = questionnaire.get(question_id)
    if question is None:
        raise NotFoundError("Question not found")
    if question.answer_type != AnswerType.IMAGE:
        raise ValidationError([FieldError("question_id", "Question does not accept images")])


def _trace(
    context: SubmissionContext,
    state: SubmissionState,
    session_id: uuid.UUID | None = None,
) -> None:
    logger.debug("%s %s -> %s", context.route, session_id or "-", state.value)


def _parse_uuid(value: uuid.UUID | str | None) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value)) if value else None
    except ValueError:
        return None


def parse_submission(payload: SubmissionRequest | dict | bytes) -> SubmissionRequest:
    """Parse a request body, reporting schema problems as :class:`ValidationError`."""
    if isinstance(payload, SubmissionRequest):
        return payload
    try:
        if isinstance(payload, (bytes, str)):
            return SubmissionRequest.model_validate_json(payload)
        return SubmissionRequest.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError([
            FieldError(".".join(str(p) for p in err["loc"]) or "body", err["msg"])
            for err in exc.errors()
        ]) from None
