"""Application factory and CLI entry point.

``create_app()`` builds the FastAPI application with:
  - Lifespan handler that loads questionnaires, builds the pipeline and
    starts the background workers (rate-limit sweeper, side-effect dispatcher)
  - CORS, rate-limit and CSRF-cookie middleware
  - Global exception handlers (IntakeError -> its status, schema errors -> 400)
  - All API routes mounted under ``/api``
  - A ``/health`` endpoint for readiness checks

The ``cli()`` function is the ``survey-server`` console-script entry point.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from survey_db.engine import dispose_engine, get_engine, get_session_factory
from survey_intake.csrf import CsrfGuard
from survey_intake.dispatcher import SideEffectDispatcher
from survey_intake.errors import IntakeError
from survey_intake.interfaces import Mailer, ObjectStorage
from survey_intake.notifications import SmtpMailer, SubmissionEffects
from survey_intake.pipeline import SubmissionPipeline
from survey_intake.questionnaire import QuestionnaireStore
from survey_intake.rate_limit import build_rate_limiter, run_sweeper
from survey_intake.storage import NullObjectStorage, create_supabase_storage
from survey_intake.uploads import UploadGuard

from survey_server.config import ServerSettings, load_settings
from survey_server.errors import (
    generic_error_handler,
    intake_error_handler,
    request_validation_handler,
)
from survey_server.middleware import install_middleware
from survey_server.routes import register_routes

logger = logging.getLogger(__name__)


def _build_storage(settings: ServerSettings) -> ObjectStorage:
    if settings.supabase_url and settings.supabase_service_key:
        return create_supabase_storage(settings.supabase_url, settings.supabase_service_key)
    logger.warning("No object storage configured; uploads will fail")
    return NullObjectStorage()


def _build_mailer(settings: ServerSettings) -> Mailer | None:
    if not settings.smtp_host:
        logger.info("SMTP not configured; admin notifications disabled")
        return None
    return SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        from_addr=settings.smtp_from,
        username=settings.smtp_username,
        password=settings.smtp_password,
        starttls=settings.smtp_starttls,
    )


# ------------------------------------------------------------------
# Lifespan: runs once at startup/shutdown
# ------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialise shared resources at startup, tear down on shutdown.

    Startup:
      1. Load questionnaire YAML into a ``QuestionnaireStore``
      2. Build limiter, storage, mailer and the ``SubmissionPipeline``
      3. Start the limiter sweeper and the side-effect dispatcher
      4. Stash everything on ``app.state`` for dependency injection

    Shutdown:
      1. Drain the dispatcher, stop the sweeper
      2. Dispose the database engine's connection pool
    """
    settings: ServerSettings = app.state.settings

    store = QuestionnaireStore(questionnaire_dir=settings.questionnaire_dir)
    store.load()

    limiter = build_rate_limiter(settings.rate_limit_storage_uri)
    effects = SubmissionEffects(
        session_factory=get_session_factory(),
        mailer=_build_mailer(settings),
        admin_email=settings.admin_email,
    )
    pipeline = SubmissionPipeline(
        store,
        csrf=app.state.csrf,
        rate_limiter=limiter,
        upload_guard=UploadGuard(_build_storage(settings)),
        effects=effects,
    )
    dispatcher = SideEffectDispatcher()
    await dispatcher.start()
    sweeper = asyncio.create_task(run_sweeper(limiter), name="rate-limit-sweeper")

    app.state.store = store
    app.state.rate_limiter = limiter
    app.state.pipeline = pipeline
    app.state.dispatcher = dispatcher

    yield

    # --- Shutdown ---
    await dispatcher.stop()
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    await dispose_engine()
    logger.info("Database engine disposed")


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------

def create_app(settings: ServerSettings | None = None) -> FastAPI:
    """Build and return the configured FastAPI application."""
    if settings is None:
        settings = load_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title="Survey Intake API",
        description="Session-scoped form and survey submission service",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Read by the lifespan handler and the middleware
    app.state.settings = settings
    app.state.csrf = CsrfGuard(secure_cookie=settings.secure_cookies)

    # --- Middleware (CORS added last so it wraps everything) ---
    install_middleware(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Exception handlers ---
    app.add_exception_handler(IntakeError, intake_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    @app.get("/health")
    async def health() -> dict:
        """Readiness check: verifies DB connectivity."""
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "ok"}
        except Exception as exc:
            logger.error("Health check failed: %s", exc)
            return {"status": "error"}

    register_routes(app)

    return app


# ------------------------------------------------------------------
# Module-level ASGI export (for uvicorn survey_server.app:app)
# ------------------------------------------------------------------
app = create_app()


def cli() -> None:
    """Console-script entry point: ``survey-server``."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "survey_server.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
