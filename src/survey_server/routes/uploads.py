"""Upload endpoints (multipart/form-data).

    POST /api/upload         fields: file, session_id, question_id  (CSRF)
    POST /api/upload/files   fields: file, session_id

Files are read with a hard byte limit one past the policy maximum, so an
oversized upload is rejected without holding more than that in memory.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from survey_intake.models.submission import IncomingFile, SubmissionContext
from survey_intake.pipeline import SubmissionPipeline
from survey_intake.uploads import ANSWER_IMAGE_POLICY, CLIENT_UPLOAD_POLICY, UploadPolicy

from survey_server.dependencies import get_context, get_db, get_pipeline

router = APIRouter(tags=["uploads"])


async def _read_file(form, policy: UploadPolicy) -> IncomingFile | None:
    upload = form.get("file")
    # Starlette hands back plain strings for non-file fields.
    if upload is None or isinstance(upload, str):
        return None
    try:
        data = await upload.read(policy.max_file_size + 1)
    finally:
        await upload.close()
    return IncomingFile(
        filename=upload.filename or "file",
        content_type=upload.content_type or "",
        data=data,
    )


async def _upload(
    request: Request,
    policy: UploadPolicy,
    db: AsyncSession,
    pipeline: SubmissionPipeline,
    ctx: SubmissionContext,
) -> dict:
    form = await request.form()
    question_id = form.get("question_id") if policy.requires_question else None
    outcome = await pipeline.upload(
        db,
        ctx,
        session_id=form.get("session_id"),
        file=await _read_file(form, policy),
        policy=policy,
        question_id=question_id if isinstance(question_id, str) else None,
    )
    return outcome.result.model_dump(mode="json")


@router.post("/upload")
async def upload_answer_image(
    request: Request,
    db: AsyncSession = Depends(get_db),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    ctx: SubmissionContext = Depends(get_context),
) -> dict:
    """Attach an image to an ``image`` question of an open session."""
    return await _upload(request, ANSWER_IMAGE_POLICY, db, pipeline, ctx)


@router.post("/upload/files")
async def upload_client_file(
    request: Request,
    db: AsyncSession = Depends(get_db),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    ctx: SubmissionContext = Depends(get_context),
) -> dict:
    """Attach a project file to an open session."""
    return await _upload(request, CLIENT_UPLOAD_POLICY, db, pipeline, ctx)
