"""Session endpoints: open a form/survey session and fetch its questions.

    POST /api/form                      open a form session
    POST /api/survey                    open a survey session
    GET  /api/{kind}/questions          active questionnaire, localized
    GET  /api/{kind}/{session_id}       session info plus its questions
"""

import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from survey_db.models.enums import SessionKind
from survey_intake.models.submission import (
    CreateSessionRequest,
    SessionInfo,
    SubmissionContext,
)
from survey_intake.pipeline import SubmissionPipeline
from survey_intake.questionnaire import QuestionnaireStore, resolve_locale

from survey_server.dependencies import get_context, get_db, get_pipeline, get_store

router = APIRouter(tags=["sessions"])


async def _create(
    kind: SessionKind,
    body: CreateSessionRequest | None,
    response: Response,
    db: AsyncSession,
    pipeline: SubmissionPipeline,
    ctx: SubmissionContext,
) -> dict:
    body = body or CreateSessionRequest()
    # Creation is the entry point for new visitors, who hold no token yet.
    row = await pipeline.create_session(
        db,
        ctx,
        kind=kind,
        locale=body.locale,
        original_session_id=body.original_session_id if kind == SessionKind.SURVEY else None,
        check_csrf=False,
    )
    csrf = pipeline.csrf
    token = ctx.csrf_cookie
    if not token:
        token = csrf.generate_token()
        response.set_cookie(value=token, **csrf.cookie_kwargs())
    questionnaire = pipeline.questionnaires.get(row.questionnaire_id)
    return {
        "success": True,
        "session": SessionInfo.from_row(row).model_dump(mode="json"),
        "csrf_token": token,
        "questions": [
            q.model_dump(mode="json")
            for q in pipeline.questionnaires.localized(questionnaire, row.locale)
        ],
    }


@router.post("/form", status_code=201)
async def create_form_session(
    response: Response,
    body: CreateSessionRequest | None = None,
    db: AsyncSession = Depends(get_db),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    ctx: SubmissionContext = Depends(get_context),
) -> dict:
    return await _create(SessionKind.FORM, body, response, db, pipeline, ctx)


@router.post("/survey", status_code=201)
async def create_survey_session(
    response: Response,
    body: CreateSessionRequest | None = None,
    db: AsyncSession = Depends(get_db),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    ctx: SubmissionContext = Depends(get_context),
) -> dict:
    """Open a survey, optionally linked to the form session it follows up on."""
    return await _create(SessionKind.SURVEY, body, response, db, pipeline, ctx)


@router.get("/{kind}/questions")
async def get_questions(
    kind: SessionKind,
    locale: str | None = None,
    store: QuestionnaireStore = Depends(get_store),
) -> dict:
    """Questions of the active questionnaire of ``kind`` in display order."""
    questionnaire = store.active(kind)
    loc = resolve_locale(locale)
    return {
        "questionnaire_id": questionnaire.id,
        "locale": loc,
        "questions": [q.model_dump(mode="json") for q in store.localized(questionnaire, loc)],
    }


@router.get("/{kind}/{session_id}")
async def get_session(
    kind: SessionKind,
    session_id: uuid.UUID,
    locale: str | None = None,
    db: AsyncSession = Depends(get_db),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
) -> dict:
    """Session state and its questions.  404 for unknown ids or another kind."""
    row = await pipeline.sessions.get(db, session_id, kind=kind)
    questionnaire = pipeline.questionnaires.get(row.questionnaire_id)
    return {
        "session": SessionInfo.from_row(row).model_dump(mode="json"),
        "questions": [
            q.model_dump(mode="json")
            for q in pipeline.questionnaires.localized(questionnaire, locale or row.locale)
        ],
    }
