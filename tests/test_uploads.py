"""UploadGuard and pipeline upload tests with in-memory storage.

Test scenarios:
  - Per-file checks: empty, oversize and disallowed types are 400
  - Session cap is inclusive: reaching it exactly passes, one byte over is 413
  - A rejected upload leaves no blob and no metadata row
  - Client uploads are also capped by file count
  - Metadata failure deletes the stored blob again
  - Replaying the same bytes returns the existing row without a second write
  - Pipeline: CSRF, session state and question checks before storing
"""

import uuid

import pytest

from survey_db.models.enums import SessionKind, UploadKind
from survey_intake.errors import (
    ConflictError,
    CsrfError,
    ExpiredError,
    InternalError,
    NotFoundError,
    PayloadTooLargeError,
    ValidationError,
)
from survey_intake.models.submission import IncomingFile, SubmissionContext
from survey_intake.uploads import (
    ANSWER_IMAGE_POLICY,
    CLIENT_UPLOAD_POLICY,
    UploadGuard,
    make_storage_key,
    normalize_mime,
)

from helpers.fakes import MockUploadRow

MIB = 1024 * 1024


def _png(size: int, seed: bytes = b"x") -> IncomingFile:
    return IncomingFile(filename="photo.PNG", content_type="image/png", data=seed * size)


def _seed(upload_repo, session_id, size, kind=UploadKind.ANSWER_IMAGE):
    """Pretend ``size`` bytes were already uploaded for the session."""
    path = f"{session_id}/seed/{uuid.uuid4().hex}.png"
    upload_repo.rows[path] = MockUploadRow(
        session_id=session_id, question_id="inspiration", upload_kind=kind.value,
        bucket="form-uploads", file_path=path, file_url=f"https://storage.test/{path}",
        file_size=size, mime_type="image/png", original_filename="seed.png",
    )


@pytest.fixture
def guard(storage, upload_repo):
    return UploadGuard(storage, repo=upload_repo)


@pytest.fixture
def sid():
    return uuid.uuid4()


# =====================================================================
# Keys and MIME types
# =====================================================================


def test_storage_key_is_deterministic(sid):
    k1 = make_storage_key(sid, "inspiration", b"abc", "a.PNG")
    k2 = make_storage_key(sid, "inspiration", b"abc", "other-name.png")
    assert k1 == k2
    assert k1.startswith(f"{sid}/inspiration/")
    assert k1.endswith(".png")
    assert make_storage_key(sid, "inspiration", b"abd", "a.png") != k1
    assert make_storage_key(sid, None, b"abc", "a.png").startswith(f"{sid}/files/")


def test_storage_key_sanitizes_question_segment(sid):
    key = make_storage_key(sid, "../../etc", b"abc", "x.png")
    assert ".." not in key
    assert key.count("/") == 2


def test_normalize_mime():
    assert normalize_mime("Image/PNG; charset=binary") == "image/png"
    assert normalize_mime(None) == ""


# =====================================================================
# Per-file checks
# =====================================================================


class TestFileChecks:

    @pytest.mark.asyncio
    async def test_empty_file(self, guard, mock_db, sid):
        with pytest.raises(ValidationError):
            await guard.accept(mock_db, session_id=sid, file=_png(0), policy=ANSWER_IMAGE_POLICY)

    @pytest.mark.asyncio
    async def test_oversize_file(self, guard, mock_db, sid, storage):
        with pytest.raises(ValidationError) as exc_info:
            await guard.accept(
                mock_db, session_id=sid, file=_png(5 * MIB + 1), policy=ANSWER_IMAGE_POLICY,
            )
        assert "Maximum size is 5MB" in exc_info.value.errors[0].message
        assert storage.blobs == {}

    @pytest.mark.asyncio
    async def test_disallowed_type(self, guard, mock_db, sid):
        pdf = IncomingFile(filename="a.pdf", content_type="application/pdf", data=b"%PDF")
        with pytest.raises(ValidationError):
            await guard.accept(mock_db, session_id=sid, file=pdf, policy=ANSWER_IMAGE_POLICY)
        # The same file is fine as a client upload.
        result = await guard.accept(mock_db, session_id=sid, file=pdf, policy=CLIENT_UPLOAD_POLICY)
        assert result.mime_type == "application/pdf"


# =====================================================================
# Session quota
# =====================================================================


class TestQuota:

    @pytest.mark.asyncio
    async def test_cap_boundary_is_inclusive(
        self, guard, mock_db, sid, storage, upload_repo,
    ):
        """48 MiB + 2 MiB reaches the 50 MiB cap and passes; 3 MiB more is 413."""
        _seed(upload_repo, sid, 48 * MIB)
        ok = await guard.accept(
            mock_db, session_id=sid, file=_png(2 * MIB, b"a"),
            policy=ANSWER_IMAGE_POLICY, question_id="inspiration",
        )
        assert ok.file_size == 2 * MIB
        assert await upload_repo.total_size(mock_db, sid, UploadKind.ANSWER_IMAGE) == 50 * MIB

        rows_before = dict(upload_repo.rows)
        blobs_before = dict(storage.blobs)
        with pytest.raises(PayloadTooLargeError) as exc_info:
            await guard.accept(
                mock_db, session_id=sid, file=_png(3 * MIB, b"b"),
                policy=ANSWER_IMAGE_POLICY, question_id="inspiration",
            )
        assert exc_info.value.status_code == 413
        assert upload_repo.rows == rows_before, "No metadata row for the rejected file"
        assert storage.blobs == blobs_before, "No blob for the rejected file"

    @pytest.mark.asyncio
    async def test_one_byte_over_cap(self, guard, mock_db, sid, upload_repo):
        _seed(upload_repo, sid, 49 * MIB)
        with pytest.raises(PayloadTooLargeError):
            await guard.accept(
                mock_db, session_id=sid, file=_png(MIB + 1), policy=ANSWER_IMAGE_POLICY,
            )

    @pytest.mark.asyncio
    async def test_quota_is_per_upload_kind(self, guard, mock_db, sid, upload_repo):
        _seed(upload_repo, sid, 50 * MIB, kind=UploadKind.ANSWER_IMAGE)
        result = await guard.accept(
            mock_db, session_id=sid, file=_png(MIB), policy=CLIENT_UPLOAD_POLICY,
        )
        assert result.file_path.startswith(f"{sid}/files/")

    @pytest.mark.asyncio
    async def test_client_upload_file_count(self, guard, mock_db, sid, upload_repo):
        for _ in range(20):
            _seed(upload_repo, sid, 10, kind=UploadKind.CLIENT_UPLOAD)
        with pytest.raises(PayloadTooLargeError) as exc_info:
            await guard.accept(
                mock_db, session_id=sid, file=_png(10), policy=CLIENT_UPLOAD_POLICY,
            )
        assert "20 files" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_session_row_is_locked(self, guard, mock_db, sid, upload_repo):
        await guard.accept(mock_db, session_id=sid, file=_png(10), policy=ANSWER_IMAGE_POLICY)
        assert upload_repo.locked == [sid]


# =====================================================================
# Failures and replays
# =====================================================================


class TestFailures:

    @pytest.mark.asyncio
    async def test_metadata_failure_deletes_blob(
        self, guard, mock_db, sid, storage, upload_repo,
    ):
        upload_repo.fail_upsert = True
        with pytest.raises(InternalError) as exc_info:
            await guard.accept(mock_db, session_id=sid, file=_png(10), policy=ANSWER_IMAGE_POLICY)
        assert storage.puts == 1, "The blob was written before the metadata insert"
        assert storage.blobs == {}, "Compensating delete should remove the blob"
        assert upload_repo.rows == {}
        assert "insert failed" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_failed_compensation_still_reports_internal(
        self, guard, mock_db, sid, storage, upload_repo,
    ):
        upload_repo.fail_upsert = True
        storage.fail_delete = True
        with pytest.raises(InternalError):
            await guard.accept(mock_db, session_id=sid, file=_png(10), policy=ANSWER_IMAGE_POLICY)

    @pytest.mark.asyncio
    async def test_storage_failure_writes_no_row(
        self, guard, mock_db, sid, storage, upload_repo,
    ):
        storage.fail_put = True
        with pytest.raises(InternalError):
            await guard.accept(mock_db, session_id=sid, file=_png(10), policy=ANSWER_IMAGE_POLICY)
        assert upload_repo.rows == {}

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(self, guard, mock_db, sid, storage, upload_repo):
        first = await guard.accept(
            mock_db, session_id=sid, file=_png(MIB), policy=ANSWER_IMAGE_POLICY,
            question_id="inspiration",
        )
        again = await guard.accept(
            mock_db, session_id=sid, file=_png(MIB), policy=ANSWER_IMAGE_POLICY,
            question_id="inspiration",
        )
        assert not first.duplicate
        assert again.duplicate
        assert again.file_path == first.file_path
        assert again.file_url == first.file_url
        assert storage.puts == 1
        assert len(upload_repo.rows) == 1

    @pytest.mark.asyncio
    async def test_replay_is_not_charged_against_full_quota(
        self, guard, mock_db, sid, upload_repo,
    ):
        first = await guard.accept(
            mock_db, session_id=sid, file=_png(MIB), policy=ANSWER_IMAGE_POLICY,
        )
        _seed(upload_repo, sid, 49 * MIB)
        again = await guard.accept(
            mock_db, session_id=sid, file=_png(MIB), policy=ANSWER_IMAGE_POLICY,
        )
        assert again.duplicate and again.file_path == first.file_path


# =====================================================================
# Through the pipeline
# =====================================================================


@pytest.fixture
def upload_ctx():
    return SubmissionContext(
        route="/api/upload", client_ip="203.0.113.9",
        csrf_header="t" * 64, csrf_cookie="t" * 64,
    )


async def _open_form(pipeline, mock_db, upload_ctx):
    return await pipeline.create_session(mock_db, upload_ctx, kind=SessionKind.FORM)


class TestPipelineUpload:

    @pytest.mark.asyncio
    async def test_answer_image_upload(self, pipeline, mock_db, upload_ctx, storage):
        row = await _open_form(pipeline, mock_db, upload_ctx)
        outcome = await pipeline.upload(
            mock_db, upload_ctx, session_id=str(row.session_id), file=_png(100),
            policy=ANSWER_IMAGE_POLICY, question_id="inspiration",
        )
        assert outcome.result.success
        assert outcome.result.file_url.startswith("https://storage.test/form-uploads/")
        assert outcome.rate_limit is not None and outcome.rate_limit.allowed
        assert len(storage.blobs) == 1

    @pytest.mark.asyncio
    async def test_csrf_checked_before_anything(self, pipeline, mock_db, upload_ctx, storage):
        upload_ctx.csrf_header = "wrong"
        with pytest.raises(CsrfError):
            await pipeline.upload(
                mock_db, upload_ctx, session_id=None, file=None,
                policy=ANSWER_IMAGE_POLICY,
            )
        assert storage.puts == 0

    @pytest.mark.asyncio
    async def test_client_upload_needs_no_csrf(self, pipeline, mock_db, upload_ctx):
        row = await _open_form(pipeline, mock_db, upload_ctx)
        anonymous = SubmissionContext(route="/api/upload/files", client_ip="203.0.113.9")
        outcome = await pipeline.upload(
            mock_db, anonymous, session_id=row.session_id, file=_png(100),
            policy=CLIENT_UPLOAD_POLICY,
        )
        assert outcome.result.file_path.startswith(f"{row.session_id}/files/")

    @pytest.mark.asyncio
    async def test_missing_fields_are_itemized(self, pipeline, mock_db, upload_ctx):
        with pytest.raises(ValidationError) as exc_info:
            await pipeline.upload(
                mock_db, upload_ctx, session_id="not-a-uuid", file=None,
                policy=ANSWER_IMAGE_POLICY,
            )
        assert {e.field for e in exc_info.value.errors} == {"session_id", "file"}

    @pytest.mark.asyncio
    async def test_unknown_session(self, pipeline, mock_db, upload_ctx):
        with pytest.raises(NotFoundError):
            await pipeline.upload(
                mock_db, upload_ctx, session_id=uuid.uuid4(), file=_png(10),
                policy=ANSWER_IMAGE_POLICY, question_id="inspiration",
            )

    @pytest.mark.asyncio
    async def test_expired_and_completed_sessions(
        self, pipeline, mock_db, upload_ctx, clock, session_repo,
    ):
        row = await _open_form(pipeline, mock_db, upload_ctx)
        clock.advance(hours=49)
        with pytest.raises(ExpiredError):
            await pipeline.upload(
                mock_db, upload_ctx, session_id=row.session_id, file=_png(10),
                policy=ANSWER_IMAGE_POLICY, question_id="inspiration",
            )
        session_repo.sessions[row.session_id].completed_at = clock.current
        with pytest.raises(ConflictError):
            await pipeline.upload(
                mock_db, upload_ctx, session_id=row.session_id, file=_png(10),
                policy=ANSWER_IMAGE_POLICY, question_id="inspiration",
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("question_id, error", [
        (None, ValidationError),
        ("no_such_question", NotFoundError),
        ("full_name", ValidationError),
    ])
    async def test_question_must_be_an_image_question(
        self, pipeline, mock_db, upload_ctx, question_id, error,
    ):
        row = await _open_form(pipeline, mock_db, upload_ctx)
        with pytest.raises(error):
            await pipeline.upload(
                mock_db, upload_ctx, session_id=row.session_id, file=_png(10),
                policy=ANSWER_IMAGE_POLICY, question_id=question_id,
            )
