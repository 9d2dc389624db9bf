"""CSRF token endpoint for API clients."""

from fastapi import APIRouter, Request, Response

router = APIRouter(tags=["csrf"])


@router.get("/csrf")
async def issue_csrf_token(request: Request, response: Response) -> dict:
    """Return the caller's CSRF token, issuing a new cookie if it has none.

    The client echoes the returned value in the CSRF header of every
    mutating request.
    """
    csrf = request.app.state.csrf
    token = request.cookies.get(csrf.cookie_name)
    if not token:
        token = csrf.generate_token()
        response.set_cookie(value=token, **csrf.cookie_kwargs())
    return {"csrf_token": token}
