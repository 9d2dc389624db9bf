"""SessionStore: creation, lookup and one-shot completion of sessions.

A session is open while ``completed_at`` is NULL and ``expires_at`` lies in
the future.  Completion is a conditional UPDATE, so of two concurrent
submits for the same session exactly one wins; the other is classified
afterwards as 409 (completed) or 410 (expired).
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from survey_db.models.enums import SessionKind
from survey_db.models.session import IntakeSession
from survey_db.repository import SessionRepository
from survey_intake.backend import backend_call
from survey_intake.constants import IP_HASH_SALT, SESSION_TTL_HOURS
from survey_intake.errors import (
    ConflictError,
    ExpiredError,
    InternalError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hash_ip(ip: str | None, salt: str = IP_HASH_SALT) -> str | None:
    """Salted SHA-256 of a client IP; raw addresses are never stored."""
    if not ip or ip == "unknown":
        return None
    return hashlib.sha256(f"{salt}{ip}".encode("utf-8")).hexdigest()


class SessionStore:
    """Session lifecycle on top of :class:`SessionRepository`.

    Args:
        repo: repository instance (tests pass a mock)
        ttl: horizon between creation and expiry
        clock: returns an aware UTC ``datetime``; injectable for tests
    """

    def __init__(
        self,
        repo: SessionRepository | None = None,
        ttl: timedelta = timedelta(hours=SESSION_TTL_HOURS),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repo or SessionRepository()
        self._ttl = ttl
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    async def create(
        self,
        db: AsyncSession,
        *,
        questionnaire_id: str,
        kind: SessionKind,
        locale: str,
        client_ip: str | None = None,
        user_agent: str | None = None,
        email: str | None = None,
        newsletter_optin: bool = False,
        original_session_id: uuid.UUID | None = None,
    ) -> IntakeSession:
        """Insert an open session expiring ``ttl`` from now."""
        now = self._clock()
        async with backend_call("create session", kind=kind.value):
            row = await self._repo.create_session(
                db,
                questionnaire_id=questionnaire_id,
                kind=kind,
                locale=locale,
                created_at=now,
                expires_at=now + self._ttl,
                ip_hash=hash_ip(client_ip),
                user_agent=user_agent,
                email=email,
                newsletter_optin=newsletter_optin,
                original_session_id=original_session_id,
            )
        logger.info("Created %s session %s", kind.value, row.session_id)
        return row

    async def get(
        self,
        db: AsyncSession,
        session_id: uuid.UUID,
        kind: SessionKind | None = None,
        *,
        refresh: bool = False,
    ) -> IntakeSession:
        """Fetch a session; a missing id (or one of another kind) is 404."""
        async with backend_call("get session", session_id=session_id):
            row = await self._repo.get_by_id(db, session_id, refresh=refresh)
        if row is None or (kind is not None and row.kind != kind.value):
            raise NotFoundError()
        return row

    def assert_open(self, row: IntakeSession) -> None:
        """Raise unless the session can still accept writes.

        Completion wins over expiry: a submitted session stays 409 forever.
        A session is expired from ``expires_at`` itself onwards
        (``now >= expires_at``), the complement of the ``expires_at > now``
        guard in :meth:`complete`, so both checks agree on the boundary.
        """
        if row.completed_at is not None:
            raise ConflictError()
        if self._clock() >= row.expires_at:
            raise ExpiredError()

    async def complete(
        self,
        db: AsyncSession,
        session_id: uuid.UUID,
        **fields: Any,
    ) -> datetime:
        """Mark the session completed and return the completion time.

        ``fields`` are extra columns written by the same UPDATE (e.g. the
        contact e-mail given with the submission).
        """
        now = self._clock()
        async with backend_call("complete session", session_id=session_id):
            claimed = await self._repo.complete_if_open(
                db, session_id, now=now, fields=fields or None,
            )
        if claimed:
            logger.info("Completed session %s", session_id)
            return now

        # Lost the race or the session was never open: say why.
        row = await self.get(db, session_id, refresh=True)
        self.assert_open(row)
        logger.error("Completion of open session %s matched no row", session_id)
        raise InternalError()
