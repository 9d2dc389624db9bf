"""FastAPI dependency injection: DB sessions, SDK singletons, request context.

Each request that touches the database gets a fresh ``AsyncSession`` via
``get_db()``.  The session is committed on success and rolled back on error,
matching the SDK convention where stores and repositories call ``flush()``
but never ``commit()``.  Routes that dispatch side effects commit
explicitly first, so the jobs only ever see committed data.
"""

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from survey_db.engine import get_session_factory
from survey_intake.csrf import CsrfGuard
from survey_intake.dispatcher import SideEffectDispatcher
from survey_intake.models.submission import SubmissionContext
from survey_intake.pipeline import SubmissionPipeline
from survey_intake.questionnaire import QuestionnaireStore


# ------------------------------------------------------------------
# Database session: transaction boundary lives here
# ------------------------------------------------------------------

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session; commit on success, rollback on error."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ------------------------------------------------------------------
# Singletons stashed on app.state during lifespan
# ------------------------------------------------------------------

def get_pipeline(request: Request) -> SubmissionPipeline:
    return request.app.state.pipeline


def get_store(request: Request) -> QuestionnaireStore:
    return request.app.state.store


def get_dispatcher(request: Request) -> SideEffectDispatcher:
    return request.app.state.dispatcher


# ------------------------------------------------------------------
# Request context
# ------------------------------------------------------------------

def client_ip(request: Request) -> str:
    """First ``X-Forwarded-For`` hop when trusted, else the socket peer."""
    if request.app.state.settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_context(request: Request) -> SubmissionContext:
    """Build the pipeline context and remember it on ``request.state``.

    The rate-limit middleware reads it back to emit ``X-RateLimit-*``
    headers for requests the pipeline counted.
    """
    csrf: CsrfGuard = request.app.state.pipeline.csrf
    ctx = SubmissionContext(
        route=request.url.path,
        client_ip=client_ip(request),
        csrf_header=request.headers.get(csrf.header_name),
        csrf_cookie=request.cookies.get(csrf.cookie_name),
        user_agent=request.headers.get("user-agent"),
    )
    request.state.intake_context = ctx
    return ctx


def require_csrf(request: Request) -> None:
    """Route-level CSRF check for endpoints outside the pipeline.

    Runs as a dependency, so it rejects before the body is validated.
    """
    csrf: CsrfGuard = request.app.state.csrf
    csrf.require(
        request.headers.get(csrf.header_name), request.cookies.get(csrf.cookie_name),
    )
