"""Async CRUD repositories for the intake tables.

All public methods accept an ``AsyncSession`` so the caller controls
transaction boundaries.  Repositories call ``flush()`` but never
``commit()``; the request-scoped dependency (or a background job that
opens its own session) is the single place where transactions finish.

The repositories deliberately avoid business-logic validation; that belongs
in the ``survey_intake`` SDK.  They *do* rely on DB constraints for
structural invariants (one answer per session/question, unique storage key).
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from survey_db.models.answer import Answer
from survey_db.models.consent import CookieConsent
from survey_db.models.enums import SessionKind, UploadKind
from survey_db.models.newsletter import NewsletterSubscriber
from survey_db.models.session import IntakeSession
from survey_db.models.session_cache import SessionCacheEntry
from survey_db.models.uploaded_file import UploadedFile


class SessionRepository:
    """Async read/write operations on the ``sessions`` table."""

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_session(
        self,
        db: AsyncSession,
        *,
        questionnaire_id: str,
        kind: SessionKind,
        locale: str,
        expires_at: datetime,
        created_at: datetime | None = None,
        session_id: uuid.UUID | None = None,
        ip_hash: str | None = None,
        user_agent: str | None = None,
        email: str | None = None,
        newsletter_optin: bool = False,
        original_session_id: uuid.UUID | None = None,
    ) -> IntakeSession:
        """Insert a new session row and return it.

        The caller must commit to persist.
        """
        row = IntakeSession(
            session_id=session_id or uuid.uuid4(),
            questionnaire_id=questionnaire_id,
            kind=kind.value,
            locale=locale,
            ip_hash=ip_hash,
            user_agent=user_agent,
            email=email,
            newsletter_optin=newsletter_optin,
            original_session_id=original_session_id,
            created_at=created_at or datetime.now(timezone.utc),
            expires_at=expires_at,
        )
        db.add(row)
        await db.flush()
        return row

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_by_id(
        self,
        db: AsyncSession,
        session_id: uuid.UUID,
        *,
        refresh: bool = False,
    ) -> IntakeSession | None:
        """Fetch a session by its UUID.

        ``refresh`` bypasses the identity map, e.g. after a conditional
        UPDATE another transaction may have won.
        """
        return await db.get(IntakeSession, session_id, populate_existing=refresh)

    # ------------------------------------------------------------------
    # Update: completion
    # ------------------------------------------------------------------

    async def complete_if_open(
        self,
        db: AsyncSession,
        session_id: uuid.UUID,
        *,
        now: datetime,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        """Set ``completed_at`` only if the session is still open.

        A single conditional UPDATE: two concurrent submits cannot both
        match, so at most one caller gets ``True``.
        """
        stmt = (
            update(IntakeSession)
            .where(
                IntakeSession.session_id == session_id,
                IntakeSession.completed_at.is_(None),
                IntakeSession.expires_at > now,
            )
            .values(completed_at=now, **(fields or {}))
            .returning(IntakeSession.session_id)
            .execution_options(synchronize_session="fetch")
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None


class AnswerRepository:
    """Batch insert and lookup on the ``answers`` table."""

    async def insert_batch(
        self,
        db: AsyncSession,
        session_id: uuid.UUID,
        answers: list[dict[str, Any]],
    ) -> list[Answer]:
        """Insert all answers for a session in one flush.

        Each dict carries ``question_id``, ``answer_type`` and
        ``answer_value``.  The unique (session_id, question_id) constraint
        rejects a second batch for the same session.
        """
        rows = [
            Answer(
                session_id=session_id,
                question_id=a["question_id"],
                answer_type=a["answer_type"],
                answer_value=a["answer_value"],
            )
            for a in answers
        ]
        db.add_all(rows)
        await db.flush()
        return rows

    async def list_for_session(
        self, db: AsyncSession, session_id: uuid.UUID
    ) -> list[Answer]:
        """Return a session's answers in insertion order."""
        stmt = (
            select(Answer)
            .where(Answer.session_id == session_id)
            .order_by(Answer.id)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())


class UploadRepository:
    """Quota accounting and metadata writes on ``uploaded_files``."""

    async def lock_session(self, db: AsyncSession, session_id: uuid.UUID) -> None:
        """Row-lock the owning session until the transaction ends.

        Serializes concurrent uploads to one session so the quota check and
        the metadata insert see a consistent total.
        """
        stmt = (
            select(IntakeSession.session_id)
            .where(IntakeSession.session_id == session_id)
            .with_for_update()
        )
        await db.execute(stmt)

    async def total_size(
        self, db: AsyncSession, session_id: uuid.UUID, upload_kind: UploadKind
    ) -> int:
        """Sum of ``file_size`` for a session's uploads of one kind."""
        stmt = select(func.coalesce(func.sum(UploadedFile.file_size), 0)).where(
            UploadedFile.session_id == session_id,
            UploadedFile.upload_kind == upload_kind.value,
        )
        result = await db.execute(stmt)
        return int(result.scalar_one())

    async def count(
        self, db: AsyncSession, session_id: uuid.UUID, upload_kind: UploadKind
    ) -> int:
        stmt = select(func.count(UploadedFile.id)).where(
            UploadedFile.session_id == session_id,
            UploadedFile.upload_kind == upload_kind.value,
        )
        result = await db.execute(stmt)
        return int(result.scalar_one())

    async def get_by_path(
        self, db: AsyncSession, file_path: str
    ) -> UploadedFile | None:
        stmt = select(UploadedFile).where(UploadedFile.file_path == file_path)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        question_id: str | None,
        upload_kind: UploadKind,
        bucket: str,
        file_path: str,
        file_url: str,
        file_size: int,
        mime_type: str,
        original_filename: str,
    ) -> UploadedFile:
        """Insert metadata for a stored blob, keyed on ``file_path``.

        ``ON CONFLICT DO NOTHING`` keeps a retried request from creating a
        second row; the existing row is returned in that case.
        """
        stmt = (
            pg_insert(UploadedFile)
            .values(
                id=uuid.uuid4(),
                session_id=session_id,
                question_id=question_id,
                upload_kind=upload_kind.value,
                bucket=bucket,
                file_path=file_path,
                file_url=file_url,
                file_size=file_size,
                mime_type=mime_type,
                original_filename=original_filename,
                created_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=[UploadedFile.file_path])
        )
        await db.execute(stmt)
        await db.flush()
        row = await self.get_by_path(db, file_path)
        if row is None:
            raise RuntimeError(f"Upload metadata missing after upsert: {file_path}")
        return row


class NewsletterRepository:
    """Read/write operations on ``newsletter_subscribers``."""

    async def get_by_email(
        self, db: AsyncSession, email: str
    ) -> NewsletterSubscriber | None:
        stmt = select(NewsletterSubscriber).where(NewsletterSubscriber.email == email)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        db: AsyncSession,
        *,
        email: str,
        first_name: str | None,
        last_name: str | None,
        locale: str,
        source: str,
    ) -> NewsletterSubscriber:
        row = NewsletterSubscriber(
            email=email,
            first_name=first_name,
            last_name=last_name,
            locale=locale,
            source=source,
            active=True,
        )
        db.add(row)
        await db.flush()
        return row

    async def reactivate(
        self,
        db: AsyncSession,
        row: NewsletterSubscriber,
        *,
        first_name: str | None,
        last_name: str | None,
    ) -> NewsletterSubscriber:
        row.active = True
        row.unsubscribed_at = None
        row.first_name = first_name
        row.last_name = last_name
        row.updated_at = datetime.now(timezone.utc)
        await db.flush()
        return row


class ConsentRepository:
    """Cookie consent upsert/lookup keyed by ``consent_id``."""

    async def get(
        self, db: AsyncSession, consent_id: uuid.UUID
    ) -> CookieConsent | None:
        stmt = select(CookieConsent).where(CookieConsent.consent_id == consent_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        db: AsyncSession,
        *,
        consent_id: uuid.UUID,
        preferences: dict[str, Any],
    ) -> CookieConsent:
        """Insert or overwrite the preference row for ``consent_id``.

        ``preferences`` holds the column values (flags, version, ip_hash,
        user_agent).
        """
        now = datetime.now(timezone.utc)
        stmt = (
            pg_insert(CookieConsent)
            .values(id=uuid.uuid4(), consent_id=consent_id, created_at=now,
                    updated_at=now, **preferences)
            .on_conflict_do_update(
                index_elements=[CookieConsent.consent_id],
                set_={**preferences, "updated_at": now},
            )
        )
        await db.execute(stmt)
        await db.flush()
        row = await self.get(db, consent_id)
        if row is None:
            raise RuntimeError(f"Cookie consent missing after upsert: {consent_id}")
        return row


class SessionCacheRepository:
    """Upsert of per-session cache snapshots."""

    async def upsert(
        self,
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        cache_key: str,
        cache_data: dict[str, Any],
    ) -> None:
        now = datetime.now(timezone.utc)
        stmt = (
            pg_insert(SessionCacheEntry)
            .values(
                session_id=session_id,
                cache_key=cache_key,
                cache_data=cache_data,
                updated_at=now,
            )
            .on_conflict_do_update(
                constraint="uq_session_cache_key",
                set_={"cache_data": cache_data, "updated_at": now},
            )
        )
        await db.execute(stmt)
        await db.flush()
