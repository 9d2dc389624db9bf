"""Cookie consent preferences.

    POST /api/cookies/consent                store (upsert) preferences
    GET  /api/cookies/consent/{consent_id}   read them back

``consent_id`` is a random UUID the browser keeps in its consent cookie.
Essential cookies cannot be declined.
"""

import uuid

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from survey_db.repository import ConsentRepository
from survey_intake.backend import backend_call
from survey_intake.errors import NotFoundError
from survey_intake.sanitize import sanitize_text
from survey_intake.sessions import hash_ip

from survey_server.dependencies import client_ip, get_db

router = APIRouter(tags=["consent"])

_repo = ConsentRepository()


class ConsentRequest(BaseModel):
    consent_id: uuid.UUID
    analytics: bool = False
    marketing: bool = False
    preferences: bool = False
    consent_version: int = Field(default=1, ge=1)


class ConsentInfo(BaseModel):
    consent_id: uuid.UUID
    essential: bool
    analytics: bool
    marketing: bool
    preferences: bool
    consent_version: int


def _info(row) -> ConsentInfo:
    return ConsentInfo(
        consent_id=row.consent_id,
        essential=row.essential,
        analytics=row.analytics,
        marketing=row.marketing,
        preferences=row.preferences,
        consent_version=row.consent_version,
    )


@router.post("/cookies/consent")
async def save_consent(
    body: ConsentRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> ConsentInfo:
    async with backend_call("save consent", consent_id=body.consent_id):
        row = await _repo.upsert(
            db,
            consent_id=body.consent_id,
            preferences={
                "essential": True,
                "analytics": body.analytics,
                "marketing": body.marketing,
                "preferences": body.preferences,
                "consent_version": body.consent_version,
                "ip_hash": hash_ip(client_ip(request)),
                "user_agent": sanitize_text(request.headers.get("user-agent", ""), 500) or None,
            },
        )
    return _info(row)


@router.get("/cookies/consent/{consent_id}")
async def get_consent(
    consent_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> ConsentInfo:
    async with backend_call("get consent", consent_id=consent_id):
        row = await _repo.get(db, consent_id)
    if row is None:
        raise NotFoundError("No consent recorded")
    return _info(row)
