"""Initial intake schema.

Creates ``sessions``, ``answers``, ``uploaded_files``,
``newsletter_subscribers``, ``cookie_consents`` and ``session_cache``.

Revision ID: 20261001_initial
Revises:
Create Date: 2026-10-01
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

# revision identifiers, used by Alembic.
revision = "20261001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- sessions ---
    op.create_table(
        "sessions",
        sa.Column("session_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("questionnaire_id", sa.Text(), nullable=False),
        sa.Column("kind", sa.String(10), nullable=False),
        sa.Column("locale", sa.String(10), nullable=False),
        sa.Column("ip_hash", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("newsletter_optin", sa.Boolean(), nullable=False,
                  server_default=sa.text("false")),
        sa.Column("original_session_id", UUID(as_uuid=True),
                  sa.ForeignKey("sessions.session_id", ondelete="SET NULL"),
                  nullable=True),
        sa.Column("created_at", TIMESTAMP(timezone=True), nullable=False),
        sa.Column("expires_at", TIMESTAMP(timezone=True), nullable=False),
        sa.Column("completed_at", TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint("expires_at > created_at", name="ck_expires_after_created"),
    )
    op.create_index("ix_sessions_kind", "sessions", ["kind"])
    op.create_index(
        "ix_sessions_open",
        "sessions",
        ["expires_at"],
        postgresql_where=sa.text("completed_at IS NULL"),
    )

    # --- answers ---
    op.create_table(
        "answers",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("session_id", UUID(as_uuid=True),
                  sa.ForeignKey("sessions.session_id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("question_id", sa.Text(), nullable=False),
        sa.Column("answer_type", sa.String(20), nullable=False),
        sa.Column("answer_value", JSONB(), nullable=False),
        sa.Column("created_at", TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint("session_id", "question_id",
                            name="uq_answer_session_question"),
    )
    op.create_index("ix_answers_session_id", "answers", ["session_id"])

    # --- uploaded_files ---
    op.create_table(
        "uploaded_files",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", UUID(as_uuid=True),
                  sa.ForeignKey("sessions.session_id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("question_id", sa.Text(), nullable=True),
        sa.Column("upload_kind", sa.String(20), nullable=False),
        sa.Column("bucket", sa.Text(), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False, unique=True),
        sa.Column("file_url", sa.Text(), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(127), nullable=False),
        sa.Column("original_filename", sa.Text(), nullable=False),
        sa.Column("created_at", TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint("file_size >= 0", name="ck_file_size_non_negative"),
    )
    op.create_index(
        "ix_uploaded_files_session_kind",
        "uploaded_files",
        ["session_id", "upload_kind"],
    )

    # --- newsletter_subscribers ---
    op.create_table(
        "newsletter_subscribers",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("first_name", sa.Text(), nullable=True),
        sa.Column("last_name", sa.Text(), nullable=True),
        sa.Column("locale", sa.String(10), nullable=False),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False,
                  server_default=sa.text("true")),
        sa.Column("unsubscribed_at", TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", TIMESTAMP(timezone=True), nullable=False),
    )

    # --- cookie_consents ---
    op.create_table(
        "cookie_consents",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("consent_id", UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("ip_hash", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("consent_version", sa.Integer(), nullable=False),
        sa.Column("essential", sa.Boolean(), nullable=False),
        sa.Column("analytics", sa.Boolean(), nullable=False),
        sa.Column("marketing", sa.Boolean(), nullable=False),
        sa.Column("preferences", sa.Boolean(), nullable=False),
        sa.Column("created_at", TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", TIMESTAMP(timezone=True), nullable=False),
    )

    # --- session_cache ---
    op.create_table(
        "session_cache",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("session_id", UUID(as_uuid=True),
                  sa.ForeignKey("sessions.session_id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("cache_key", sa.Text(), nullable=False),
        sa.Column("cache_data", JSONB(), nullable=False),
        sa.Column("updated_at", TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint("session_id", "cache_key", name="uq_session_cache_key"),
    )


def downgrade() -> None:
    op.drop_table("session_cache")
    op.drop_table("cookie_consents")
    op.drop_table("newsletter_subscribers")
    op.drop_index("ix_uploaded_files_session_kind", table_name="uploaded_files")
    op.drop_table("uploaded_files")
    op.drop_index("ix_answers_session_id", table_name="answers")
    op.drop_table("answers")
    op.drop_index("ix_sessions_open", table_name="sessions")
    op.drop_index("ix_sessions_kind", table_name="sessions")
    op.drop_table("sessions")
