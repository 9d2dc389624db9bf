"""Route registration: mounts all routers under ``/api``."""

from fastapi import FastAPI

API_PREFIX = "/api"

# Routes whose handlers run the SubmissionPipeline, which does its own
# CSRF-then-rate-limit check.
PIPELINE_PATHS = frozenset({
    f"{API_PREFIX}/form",
    f"{API_PREFIX}/survey",
    f"{API_PREFIX}/form/submit",
    f"{API_PREFIX}/survey/submit",
    f"{API_PREFIX}/upload",
    f"{API_PREFIX}/upload/files",
})


def register_routes(app: FastAPI) -> None:
    """Include all sub-routers under the API prefix."""
    from survey_server.routes.consent import router as consent_router
    from survey_server.routes.csrf import router as csrf_router
    from survey_server.routes.newsletter import router as newsletter_router
    from survey_server.routes.sessions import router as sessions_router
    from survey_server.routes.submit import router as submit_router
    from survey_server.routes.uploads import router as uploads_router

    app.include_router(csrf_router, prefix=API_PREFIX)
    app.include_router(sessions_router, prefix=API_PREFIX)
    app.include_router(submit_router, prefix=API_PREFIX)
    app.include_router(uploads_router, prefix=API_PREFIX)
    app.include_router(newsletter_router, prefix=API_PREFIX)
    app.include_router(consent_router, prefix=API_PREFIX)
