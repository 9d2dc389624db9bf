"""Object storage backends.

:class:`SupabaseObjectStorage` wraps a (synchronous) supabase client; its
calls run in a worker thread so the event loop is never blocked.  The
client only needs to expose ``.storage.from_(bucket)`` returning an object
with ``upload``, ``download``, ``remove`` and ``get_public_url``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from survey_intake.interfaces import ObjectStorage

logger = logging.getLogger(__name__)


def _norm_key(bucket: str, key: str) -> str:
    # Supabase expects keys relative to the bucket.
    key = key.lstrip("/")
    prefix = f"{bucket}/"
    return key[len(prefix):] if key.startswith(prefix) else key


class SupabaseObjectStorage(ObjectStorage):
    def __init__(self, client: Any) -> None:
        self._client = client

    def _bucket(self, bucket: str) -> Any:
        storage = getattr(self._client, "storage", None)
        if storage is None or not hasattr(storage, "from_"):
            raise RuntimeError("invalid_supabase_client")
        return storage.from_(bucket)

    async def put(
        self,
        *,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str,
        upsert: bool = True,
    ) -> None:
        opts = {
            "content-type": content_type,
            "cache-control": "3600",
            "upsert": "true" if upsert else "false",
        }
        b = self._bucket(bucket)
        await asyncio.to_thread(b.upload, _norm_key(bucket, key), data, opts)

    async def get(self, *, bucket: str, key: str) -> bytes:
        b = self._bucket(bucket)
        return await asyncio.to_thread(b.download, _norm_key(bucket, key))

    async def delete(self, *, bucket: str, key: str) -> None:
        b = self._bucket(bucket)
        await asyncio.to_thread(b.remove, [_norm_key(bucket, key)])

    def public_url(self, *, bucket: str, key: str) -> str:
        url = self._bucket(bucket).get_public_url(_norm_key(bucket, key))
        # Some client versions append a bare "?" to public URLs.
        return str(url).rstrip("?")


class NullObjectStorage(ObjectStorage):
    """Placeholder used when no storage backend is configured.

    Every write fails, so uploads answer 500 instead of silently dropping
    files.
    """

    async def put(self, *, bucket: str, key: str, data: bytes,
                  content_type: str, upsert: bool = True) -> None:
        raise RuntimeError("object storage is not configured")

    async def get(self, *, bucket: str, key: str) -> bytes:
        raise RuntimeError("object storage is not configured")

    async def delete(self, *, bucket: str, key: str) -> None:
        raise RuntimeError("object storage is not configured")

    def public_url(self, *, bucket: str, key: str) -> str:
        return f"/{bucket}/{key}"


def create_supabase_storage(url: str, service_key: str) -> SupabaseObjectStorage:
    """Build storage from a Supabase project URL and service-role key."""
    from supabase import create_client

    logger.info("Using Supabase object storage at %s", url)
    return SupabaseObjectStorage(create_client(url, service_key))
