from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from survey_intake.csrf import CsrfGuard
from survey_intake.dispatcher import SideEffectDispatcher
from survey_intake.models.submission import SubmissionContext
from survey_intake.pipeline import SubmissionPipeline
from survey_intake.questionnaire import QuestionnaireStore
from survey_intake.rate_limit import InMemoryRateLimiter
from survey_intake.sessions import SessionStore
from survey_intake.uploads import UploadGuard
from survey_server.app import create_app
from survey_server.config import ServerSettings
from survey_server.dependencies import get_db

from helpers.fakes import (
    FakeClock,
    FakeObjectStorage,
    FakeTimer,
    MockAnswerRepository,
    MockSessionRepository,
    MockUploadRepository,
)

QUESTIONNAIRE_DIR = Path(__file__).resolve().parent.parent / "questionnaires"

CSRF_TOKEN = "a" * 64


@pytest.fixture(scope="session")
def store():
    """Load the shipped questionnaires once for the entire test session."""
    s = QuestionnaireStore(QUESTIONNAIRE_DIR)
    s.load()
    return s


@pytest.fixture
def mock_db():
    """AsyncMock standing in for AsyncSession; flush/commit are no-ops."""
    return AsyncMock()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def session_repo():
    return MockSessionRepository()


@pytest.fixture
def answer_repo():
    return MockAnswerRepository()


@pytest.fixture
def upload_repo():
    return MockUploadRepository()


@pytest.fixture
def storage():
    return FakeObjectStorage()


@pytest.fixture
def sessions(session_repo, clock):
    return SessionStore(repo=session_repo, clock=clock)


@pytest.fixture
def limiter(timer):
    return InMemoryRateLimiter(max_requests=10, window_seconds=60, clock=timer)


@pytest.fixture
def pipeline(store, sessions, limiter, upload_repo, storage, answer_repo):
    """SubmissionPipeline wired to in-memory repositories and storage."""
    return SubmissionPipeline(
        store,
        sessions=sessions,
        csrf=CsrfGuard(),
        rate_limiter=limiter,
        upload_guard=UploadGuard(storage, repo=upload_repo),
        answer_repo=answer_repo,
    )


@pytest.fixture
def context():
    """Context of a well-behaved browser request with a matching CSRF pair."""
    return SubmissionContext(
        route="/api/form/submit",
        client_ip="203.0.113.7",
        csrf_header=CSRF_TOKEN,
        csrf_cookie=CSRF_TOKEN,
        user_agent="pytest",
    )


@pytest.fixture
def app(store, limiter, pipeline, mock_db):
    """ASGI app wired to the in-memory pipeline.

    ``ASGITransport`` does not run the lifespan, so the objects it would
    build are stashed on ``app.state`` here and ``get_db`` yields ``mock_db``.
    """
    application = create_app(ServerSettings())
    application.state.store = store
    application.state.rate_limiter = limiter
    application.state.pipeline = pipeline
    application.state.dispatcher = SideEffectDispatcher()

    async def _db():
        yield mock_db

    application.dependency_overrides[get_db] = _db
    return application
