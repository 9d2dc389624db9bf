"""HTTP middleware: rate limiting on the API prefix and CSRF cookie issuance.

Pipeline routes (see ``routes.PIPELINE_PATHS``) count themselves after the
CSRF check, so this middleware only decorates their responses with the
``X-RateLimit-*`` headers (read with ``peek`` when the request was refused
before being counted); every other path under the prefix is counted here.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from survey_intake.errors import RateLimitedError
from survey_intake.rate_limit import rate_limit_headers
from survey_server.dependencies import client_ip
from survey_server.routes import PIPELINE_PATHS

logger = logging.getLogger(__name__)


def install_middleware(app: FastAPI) -> None:
    """Register the middleware functions on ``app``."""

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        settings = request.app.state.settings
        path = request.url.path
        if not path.startswith(settings.rate_limit_prefix):
            return await call_next(request)

        limiter = getattr(request.app.state, "rate_limiter", None)
        result = None
        if limiter is not None and path not in PIPELINE_PATHS:
            result = await limiter.check(f"{client_ip(request)}:{path}")
            if not result.allowed:
                logger.warning("Rate limited %s:%s", client_ip(request), path)
                exc = RateLimitedError(result)
                return JSONResponse(
                    status_code=exc.status_code,
                    content=exc.to_dict(),
                    headers=rate_limit_headers(result),
                )

        response = await call_next(request)
        ctx = getattr(request.state, "intake_context", None)
        if ctx is not None and ctx.rate_limit is not None:
            result = ctx.rate_limit
        elif limiter is not None and path in PIPELINE_PATHS:
            # Refused before it was counted (CSRF): report without counting.
            result = await limiter.peek(f"{client_ip(request)}:{path}")
        if result is not None:
            response.headers.update(rate_limit_headers(result))
        return response

    @app.middleware("http")
    async def csrf_cookie(request: Request, call_next):
        response = await call_next(request)
        csrf = request.app.state.csrf
        # Issue a token to clients that have none; existing tokens are kept.
        if csrf.cookie_name not in request.cookies and not _sets_cookie(response, csrf.cookie_name):
            response.set_cookie(value=csrf.generate_token(), **csrf.cookie_kwargs())
        return response


def _sets_cookie(response, name: str) -> bool:
    prefix = f"{name}="
    return any(
        v.startswith(prefix) for v in response.headers.getlist("set-cookie")
    )
