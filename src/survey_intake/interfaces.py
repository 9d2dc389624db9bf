"""Abstract interfaces for the swappable backends of the intake pipeline.

These ABCs define the contract that concrete backends must fulfil.  The SDK
ships in-process and hosted implementations; tests supply in-memory fakes.

Typical wiring::

    limiter: RateLimiter = InMemoryRateLimiter()          # or StorageRateLimiter
    storage: ObjectStorage = SupabaseObjectStorage(client)
    mailer: Mailer = SmtpMailer(host="smtp.example.com", ...)

    pipeline = SubmissionPipeline(store, rate_limiter=limiter,
                                  upload_guard=UploadGuard(storage))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from survey_intake.rate_limit import RateLimitResult


class RateLimiter(ABC):
    """Per-key fixed-window request counter.

    Implementations decide where counters live (process memory, Redis, ...).
    :meth:`check` counts the request and reports whether it is allowed;
    :meth:`peek` reads the same state without counting.
    """

    @abstractmethod
    async def check(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and return the window state.

        Parameters
        ----------
        key:
            Client identity plus route, e.g. ``"203.0.113.7:/api/form/submit"``.

        Returns
        -------
        RateLimitResult
            ``allowed`` is false once the key has used up its window; the
            result also carries ``remaining`` and the window ``reset_time``.
        """
        ...

    @abstractmethod
    async def peek(self, key: str) -> RateLimitResult:
        """Return the window state for ``key`` without counting a request.

        Used to decorate responses refused before the request was counted
        (e.g. a CSRF failure) with the same ``X-RateLimit-*`` headers.
        """
        ...

    async def sweep(self) -> int:
        """Drop expired windows and return how many were removed.

        Backends with native expiry (e.g. Redis TTLs) need not override this.
        """
        return 0


class ObjectStorage(ABC):
    """Minimal blob store: put/get/delete by bucket + key."""

    @abstractmethod
    async def put(
        self,
        *,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str,
        upsert: bool = True,
    ) -> None:
        """Store ``data`` under ``key``.  Overwrites when ``upsert`` is true."""
        ...

    @abstractmethod
    async def get(self, *, bucket: str, key: str) -> bytes:
        ...

    @abstractmethod
    async def delete(self, *, bucket: str, key: str) -> None:
        ...

    @abstractmethod
    def public_url(self, *, bucket: str, key: str) -> str:
        """URL under which the stored object is served."""
        ...


class Mailer(ABC):
    """Outbound e-mail used by the notification side effects."""

    @abstractmethod
    async def send(
        self,
        *,
        to: str,
        subject: str,
        text_body: str,
        html_body: str | None = None,
    ) -> None:
        ...
