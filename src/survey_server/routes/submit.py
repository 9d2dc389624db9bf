"""Submission endpoints.

    POST /api/form/submit     session_id optional: created when absent
    POST /api/survey/submit   session_id required

The body is handed to the pipeline unparsed so CSRF and rate limiting are
decided before any schema error.  The request transaction is committed here,
then the side effects are dispatched.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from survey_db.models.enums import SessionKind
from survey_intake.dispatcher import SideEffectDispatcher
from survey_intake.models.submission import SubmissionContext
from survey_intake.pipeline import SubmissionPipeline

from survey_server.dependencies import (
    get_context,
    get_db,
    get_dispatcher,
    get_pipeline,
)

router = APIRouter(tags=["submit"])


async def _submit(
    kind: SessionKind,
    request: Request,
    db: AsyncSession,
    pipeline: SubmissionPipeline,
    dispatcher: SideEffectDispatcher,
    ctx: SubmissionContext,
) -> dict:
    outcome = await pipeline.submit(
        db,
        await request.body(),
        ctx,
        kind=kind,
        allow_create=kind == SessionKind.FORM,
    )
    await db.commit()
    dispatcher.dispatch(outcome.side_effects)
    return {
        "success": True,
        "message": "Your answers have been saved",
        "session_id": str(outcome.session_id),
        "completed_at": outcome.completed_at.isoformat(),
        "answers": len(outcome.answers),
    }


@router.post("/form/submit")
async def submit_form(
    request: Request,
    db: AsyncSession = Depends(get_db),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
    ctx: SubmissionContext = Depends(get_context),
) -> dict:
    return await _submit(SessionKind.FORM, request, db, pipeline, dispatcher, ctx)


@router.post("/survey/submit")
async def submit_survey(
    request: Request,
    db: AsyncSession = Depends(get_db),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
    ctx: SubmissionContext = Depends(get_context),
) -> dict:
    return await _submit(SessionKind.SURVEY, request, db, pipeline, dispatcher, ctx)
