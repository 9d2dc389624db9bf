"""UploadGuard: quota-checked, idempotent file uploads.

Two policies share one code path:

  - :data:`ANSWER_IMAGE_POLICY`: images attached to an ``image`` question
  - :data:`CLIENT_UPLOAD_POLICY`: project files sent with a session

The storage key is derived from the content
(``{session_id}/{question_id or "files"}/{sha256[:32]}{ext}``), so replaying
the same upload hits the same key and the same metadata row instead of
creating a duplicate or charging the quota twice.

A blob whose metadata row cannot be written is deleted again before the
error is reported.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import unicodedata
import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from survey_db.models.enums import UploadKind
from survey_db.models.uploaded_file import UploadedFile
from survey_db.repository import UploadRepository
from survey_intake.backend import backend_call
from survey_intake.constants import (
    ALLOWED_CLIENT_UPLOAD_TYPES,
    ALLOWED_IMAGE_TYPES,
    ANSWER_IMAGE_BUCKET,
    ANSWER_IMAGE_MAX_FILE_SIZE,
    ANSWER_IMAGE_SESSION_CAP,
    CLIENT_UPLOAD_BUCKET,
    CLIENT_UPLOAD_MAX_FILE_SIZE,
    CLIENT_UPLOAD_MAX_FILES,
    CLIENT_UPLOAD_SESSION_CAP,
)
from survey_intake.errors import (
    FieldError,
    InternalError,
    PayloadTooLargeError,
    ValidationError,
)
from survey_intake.interfaces import ObjectStorage
from survey_intake.models.submission import IncomingFile, UploadResult

logger = logging.getLogger(__name__)

_SEGMENT_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class UploadPolicy:
    kind: UploadKind
    bucket: str
    max_file_size: int
    session_cap: int
    allowed_types: frozenset[str]
    max_files: int | None = None
    requires_csrf: bool = True
    requires_question: bool = False


ANSWER_IMAGE_POLICY = UploadPolicy(
    kind=UploadKind.ANSWER_IMAGE,
    bucket=ANSWER_IMAGE_BUCKET,
    max_file_size=ANSWER_IMAGE_MAX_FILE_SIZE,
    session_cap=ANSWER_IMAGE_SESSION_CAP,
    allowed_types=ALLOWED_IMAGE_TYPES,
    requires_question=True,
)

CLIENT_UPLOAD_POLICY = UploadPolicy(
    kind=UploadKind.CLIENT_UPLOAD,
    bucket=CLIENT_UPLOAD_BUCKET,
    max_file_size=CLIENT_UPLOAD_MAX_FILE_SIZE,
    session_cap=CLIENT_UPLOAD_SESSION_CAP,
    allowed_types=ALLOWED_CLIENT_UPLOAD_TYPES,
    max_files=CLIENT_UPLOAD_MAX_FILES,
    requires_csrf=False,
)


# ------------------------------------------------------------------
# Key derivation
# ------------------------------------------------------------------

def _sanitize_segment(value: str | None, *, fallback: str) -> str:
    normalized = unicodedata.normalize("NFKD", value or "")
    ascii_value = normalized.encode("ascii", "ignore").decode("ascii")
    return _SEGMENT_RE.sub("-", ascii_value).strip("-_.") or fallback


def _extension(filename: str) -> str:
    ext = os.path.splitext(os.path.basename(filename or ""))[1].lower()
    ext = "".join(ch for ch in ext if ch.isalnum())
    return f".{ext[:10]}" if ext else ""


def make_storage_key(
    session_id: uuid.UUID,
    question_id: str | None,
    data: bytes,
    filename: str,
) -> str:
    """Deterministic key: same session, question and bytes give the same key."""
    digest = hashlib.sha256(data).hexdigest()[:32]
    segment = _sanitize_segment(question_id, fallback="files")
    return f"{session_id}/{segment}/{digest}{_extension(filename)}"


def normalize_mime(content_type: str | None) -> str:
    """``"Image/PNG; charset=x"`` -> ``"image/png"``."""
    return (content_type or "").split(";")[0].strip().lower()


# ------------------------------------------------------------------
# Guard
# ------------------------------------------------------------------

class UploadGuard:
    """Validates, stores and records one uploaded file.

    Args:
        storage: blob backend
        repo: metadata repository (tests pass a mock)
    """

    def __init__(
        self, storage: ObjectStorage, repo: UploadRepository | None = None,
    ) -> None:
        self._storage = storage
        self._repo = repo or UploadRepository()

    def check_file(self, file: IncomingFile, policy: UploadPolicy) -> str:
        """Per-file checks; returns the normalized MIME type."""
        mime = normalize_mime(file.content_type)
        errors: list[FieldError] = []
        if file.size == 0:
            errors.append(FieldError("file", "File is empty"))
        elif file.size > policy.max_file_size:
            errors.append(FieldError(
                "file",
                f"File too large. Maximum size is {policy.max_file_size // (1024 * 1024)}MB",
            ))
        if mime not in policy.allowed_types:
            errors.append(FieldError("file", f"File type not allowed: {mime or 'unknown'}"))
        if errors:
            raise ValidationError(errors)
        return mime

    async def accept(
        self,
        db: AsyncSession,
        *,
        session_id: uuid.UUID,
        file: IncomingFile,
        policy: UploadPolicy,
        question_id: str | None = None,
    ) -> UploadResult:
        """Store ``file`` for the session under ``policy``.

        Raises:
            ValidationError: empty, oversize or disallowed file
            PayloadTooLargeError: session byte cap or file count exceeded
            InternalError: storage or metadata failure
        """
        mime = self.check_file(file, policy)
        key = make_storage_key(session_id, question_id, file.data, file.filename)
        ctx = {"session_id": session_id, "key": key}

        async with backend_call("upload quota", **ctx):
            await self._repo.lock_session(db, session_id)
            existing = await self._repo.get_by_path(db, key)
            if existing is None:
                total = await self._repo.total_size(db, session_id, policy.kind)
                count = await self._repo.count(db, session_id, policy.kind)

        if existing is not None:
            logger.info("Upload replay for session %s matched %s", session_id, key)
            return _result(existing, duplicate=True)

        # Boundary inclusive: reaching the cap exactly is allowed.
        if total + file.size > policy.session_cap:
            logger.info(
                "Upload quota exceeded for session %s: %d + %d > %d",
                session_id, total, file.size, policy.session_cap,
            )
            raise PayloadTooLargeError(
                f"Session upload limit of {policy.session_cap // (1024 * 1024)}MB exceeded"
            )
        if policy.max_files is not None and count >= policy.max_files:
            raise PayloadTooLargeError(
                f"Maximum of {policy.max_files} files per session reached"
            )

        async with backend_call("store blob", **ctx):
            await self._storage.put(
                bucket=policy.bucket, key=key, data=file.data,
                content_type=mime, upsert=True,
            )

        try:
            async with backend_call("record upload", **ctx):
                row = await self._repo.upsert(
                    db,
                    session_id=session_id,
                    question_id=question_id,
                    upload_kind=policy.kind,
                    bucket=policy.bucket,
                    file_path=key,
                    file_url=self._storage.public_url(bucket=policy.bucket, key=key),
                    file_size=file.size,
                    mime_type=mime,
                    original_filename=_sanitize_segment(
                        os.path.basename(file.filename or ""), fallback="file",
                    ),
                )
        except InternalError:
            await self._discard(policy.bucket, key)
            raise

        logger.info(
            "Stored %s upload %s (%d bytes) for session %s",
            policy.kind.value, key, file.size, session_id,
        )
        return _result(row)

    async def _discard(self, bucket: str, key: str) -> None:
        try:
            async with backend_call("discard orphan blob", key=key):
                await self._storage.delete(bucket=bucket, key=key)
        except InternalError:
            # Already logged; the original failure is what the caller sees.
            logger.error("Orphan blob left in %s: %s", bucket, key)


def _result(row: UploadedFile, duplicate: bool = False) -> UploadResult:
    return UploadResult(
        file_url=row.file_url,
        file_path=row.file_path,
        file_size=row.file_size,
        mime_type=row.mime_type,
        original_filename=row.original_filename,
        duplicate=duplicate,
    )
