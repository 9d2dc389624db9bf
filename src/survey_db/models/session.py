"""IntakeSession ORM model: one row per form/survey instance.

A row is created on the first submission attempt (form) or on the session
creation step (form or survey).  ``completed_at`` moves from NULL to a
timestamp exactly once; rows are never deleted by the intake service.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from survey_db.models.base import Base


class IntakeSession(Base):
    """One row per form or survey session."""

    __tablename__ = "sessions"

    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # --- Questionnaire reference ---
    questionnaire_id: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        index=True,
    )
    locale: Mapped[str] = mapped_column(String(10), nullable=False, default="en")

    # --- Client fingerprint (never the raw IP) ---
    ip_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Contact details ---
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    newsletter_optin: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false"),
    )

    # Links a follow-up survey to the form submission that triggered it
    original_session_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("sessions.session_id", ondelete="SET NULL"),
        nullable=True,
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    expires_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False,
    )
    # NULL while in progress
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True,
    )

    __table_args__ = (
        CheckConstraint("expires_at > created_at", name="ck_expires_after_created"),
        Index(
            "ix_sessions_open",
            "expires_at",
            postgresql_where=text("completed_at IS NULL"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<IntakeSession(session_id={self.session_id!s}, kind={self.kind!r}, "
            f"questionnaire={self.questionnaire_id!r}, completed_at={self.completed_at!r})>"
        )
