"""Newsletter subscription endpoint.

    POST /api/newsletter/subscribe   (CSRF)

An upsert by lower-cased e-mail: a new address answers 201, an inactive one
is reactivated and an active one left alone (both 200).
"""

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from survey_intake.newsletter import NewsletterService, SubscribeOutcome
from survey_intake.questionnaire import resolve_locale

from survey_server.dependencies import get_db, require_csrf

router = APIRouter(tags=["newsletter"])

_service = NewsletterService()

_MESSAGES = {
    SubscribeOutcome.CREATED: "Successfully subscribed to the newsletter",
    SubscribeOutcome.REACTIVATED: "Your subscription has been reactivated",
    SubscribeOutcome.ALREADY_ACTIVE: "You are already subscribed",
}


class SubscribeRequest(BaseModel):
    email: EmailStr
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    locale: str | None = None
    source: str = Field(default="website", max_length=50)


@router.post("/newsletter/subscribe", dependencies=[Depends(require_csrf)])
async def subscribe(
    body: SubscribeRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> dict:
    outcome, _ = await _service.subscribe(
        db,
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        locale=resolve_locale(body.locale),
        source=body.source,
    )
    if outcome == SubscribeOutcome.CREATED:
        response.status_code = 201
    return {"success": True, "status": outcome.value, "message": _MESSAGES[outcome]}
