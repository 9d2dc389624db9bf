"""SubmissionClient: async HTTP client for the intake API.

Wraps the CSRF handshake, session creation, answer caching and final
submission::

    async with SubmissionClient("http://localhost:8000", cache=ClientCache(dir)) as c:
        info = await c.start(SessionKind.FORM, locale="de")
        c.save_answer(info.kind, info.session_id, "full_name", "Ada")
        await c.submit(info.kind, info.session_id)

Answers saved through :meth:`save_answer` live in the :class:`ClientCache`
until a submission succeeds, so a failed or interrupted submit can be
retried later from the cache.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any

import httpx

from survey_db.models.enums import SessionKind
from survey_intake.cache import ClientCache
from survey_intake.constants import CSRF_HEADER_NAME
from survey_intake.models.question import LocalizedQuestion
from survey_intake.models.submission import SessionInfo

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Non-2xx answer from the intake API, carrying its error body."""

    def __init__(self, status_code: int, body: dict[str, Any]) -> None:
        self.status_code = status_code
        self.kind = body.get("kind", "unknown")
        self.message = body.get("message", "")
        self.errors = body.get("errors", [])
        super().__init__(f"{status_code} {self.kind}: {self.message}")


class SubmissionClient:
    def __init__(
        self,
        base_url: str,
        cache: ClientCache | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._csrf_token: str | None = None
        self.cache = cache

    async def __aenter__(self) -> SubmissionClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # API calls
    # ------------------------------------------------------------------

    async def health_check(self) -> bool:
        try:
            resp = await self._http.get("/health")
            return resp.status_code == 200
        except (httpx.ConnectError, httpx.TimeoutException):
            return False

    async def ensure_csrf(self) -> str:
        """Fetch a token once; the server also sets the matching cookie."""
        if self._csrf_token is None:
            body = await self._request("GET", "/api/csrf")
            self._csrf_token = body["csrf_token"]
        return self._csrf_token

    async def start(
        self,
        kind: SessionKind,
        locale: str | None = None,
        original_session_id: uuid.UUID | None = None,
    ) -> SessionInfo:
        payload: dict[str, Any] = {"locale": locale}
        if original_session_id is not None:
            payload["original_session_id"] = str(original_session_id)
        body = await self._request("POST", f"/api/{kind.value}", json=payload)
        # Session creation hands out the token together with the cookie.
        self._csrf_token = body.get("csrf_token") or self._csrf_token
        info = SessionInfo.model_validate(body["session"])
        if self.cache is not None:
            self.cache.save(
                kind, str(info.session_id),
                locale=info.locale, questionnaire_id=info.questionnaire_id,
                csrf_token=self._csrf_token,
            )
        return info

    async def questions(
        self, kind: SessionKind, locale: str | None = None,
    ) -> list[LocalizedQuestion]:
        params = {"locale": locale} if locale else None
        body = await self._request("GET", f"/api/{kind.value}/questions", params=params)
        return [LocalizedQuestion.model_validate(q) for q in body["questions"]]

    def save_answer(
        self, kind: SessionKind, session_id: uuid.UUID | str, question_id: str, value: Any,
    ) -> None:
        if self.cache is None:
            raise RuntimeError("save_answer needs a ClientCache")
        self.cache.save_answer(kind, str(session_id), question_id, value)

    async def submit(
        self,
        kind: SessionKind,
        session_id: uuid.UUID | str | None = None,
        answers: dict[str, Any] | None = None,
        *,
        email: str | None = None,
        newsletter_optin: bool = False,
        locale: str | None = None,
    ) -> dict[str, Any]:
        """Submit ``answers`` (or the cached ones) and clear the cache on success.

        Raises:
            RemoteError: the API rejected the submission; the cache is kept
        """
        if answers is None:
            cached = (
                self.cache.load(kind, str(session_id))
                if self.cache is not None and session_id is not None else None
            )
            answers = dict(cached.answers) if cached else {}
        payload: dict[str, Any] = {
            "responses": [
                {"question_id": qid, "answer_value": value} for qid, value in answers.items()
            ],
            "newsletter_optin": newsletter_optin,
        }
        if session_id is not None:
            payload["session_id"] = str(session_id)
        if email is not None:
            payload["email"] = email
        if locale is not None:
            payload["locale"] = locale

        body = await self._request("POST", f"/api/{kind.value}/submit", json=payload, csrf=True)
        if self.cache is not None and session_id is not None:
            self.cache.clear(kind, str(session_id))
        return body

    async def upload(
        self,
        session_id: uuid.UUID | str,
        path: str | Path,
        *,
        content_type: str,
        question_id: str | None = None,
    ) -> dict[str, Any]:
        """Upload an answer image (with ``question_id``) or a client file."""
        path = Path(path)
        data = {"session_id": str(session_id)}
        if question_id is not None:
            data["question_id"] = question_id
            url = "/api/upload"
        else:
            url = "/api/upload/files"
        files = {"file": (path.name, path.read_bytes(), content_type)}
        return await self._request("POST", url, data=data, files=files, csrf=True)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @property
    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("SubmissionClient must be used as an async context manager")
        return self._client

    async def _request(self, method: str, url: str, *, csrf: bool = False, **kwargs: Any) -> dict:
        headers = {}
        if csrf:
            headers[CSRF_HEADER_NAME] = await self.ensure_csrf()
        resp = await self._http.request(method, url, headers=headers, **kwargs)
        try:
            body = resp.json()
        except ValueError:
            body = {"message": resp.text}
        if resp.is_error:
            logger.debug("%s %s -> %d %s", method, url, resp.status_code, body)
            raise RemoteError(resp.status_code, body)
        return body
