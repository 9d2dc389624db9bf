"""ClientCache: local mirror of in-progress answers with a 24h expiry.

Lets a client resume a form or survey after a restart without having
submitted anything.  One JSON file per session under ``cache_dir``, named
``{kind}_session_{session_id}.json``.  Entries older than the TTL are
treated as absent and removed on access.  Cache failures are logged and
never raised: losing the cache only costs the user retyping.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from survey_db.models.enums import SessionKind
from survey_intake.constants import CLIENT_CACHE_TTL_HOURS

logger = logging.getLogger(__name__)

_PREFIXES = tuple(f"{k.value}_session_" for k in SessionKind)


class CachedSession(BaseModel):
    session_id: str
    # Unix seconds of the last write
    timestamp: float
    locale: str | None = None
    questionnaire_id: str | None = None
    answers: dict[str, Any] = Field(default_factory=dict)
    csrf_token: str | None = None
    current_step: int | None = None


class ClientCache:
    """File-backed cache keyed by (kind, session id).

    Args:
        cache_dir: directory for cache files (created on demand)
        ttl: entry lifetime measured from the last write
        clock: returns Unix time; injectable for tests
    """

    def __init__(
        self,
        cache_dir: str | Path,
        ttl: timedelta = timedelta(hours=CLIENT_CACHE_TTL_HOURS),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._dir = Path(cache_dir)
        self._ttl = ttl.total_seconds()
        self._clock = clock

    def _path(self, kind: SessionKind, session_id: str) -> Path:
        return self._dir / f"{kind.value}_session_{session_id}.json"

    def _fresh(self, entry: CachedSession) -> bool:
        return self._clock() - entry.timestamp < self._ttl

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def load(self, kind: SessionKind, session_id: str) -> CachedSession | None:
        """Return the entry, or ``None`` if missing, unreadable or expired."""
        path = self._path(kind, session_id)
        if not path.exists():
            return None
        try:
            entry = CachedSession.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as exc:
            logger.warning("Dropping unreadable cache entry %s: %s", path.name, exc)
            self._unlink(path)
            return None
        if not self._fresh(entry):
            self._unlink(path)
            return None
        return entry

    def save(self, kind: SessionKind, session_id: str, **fields: Any) -> CachedSession | None:
        """Merge ``fields`` into the entry and refresh its timestamp."""
        current = self.load(kind, session_id)
        data = current.model_dump() if current else {}
        data.update(fields)
        data["session_id"] = str(session_id)
        data["timestamp"] = self._clock()
        entry = CachedSession.model_validate(data)
        try:
            self._write(self._path(kind, session_id), entry)
        except OSError as exc:
            logger.warning("Could not write cache for %s %s: %s", kind.value, session_id, exc)
            return None
        return entry

    def save_answer(self, kind: SessionKind, session_id: str, question_id: str, value: Any) -> None:
        current = self.load(kind, session_id)
        answers = dict(current.answers) if current else {}
        answers[question_id] = value
        self.save(kind, session_id, answers=answers)

    def update_step(self, kind: SessionKind, session_id: str, step: int) -> None:
        self.save(kind, session_id, current_step=step)

    def clear(self, kind: SessionKind, session_id: str) -> None:
        self._unlink(self._path(kind, session_id))

    def purge_expired(self) -> int:
        """Remove expired or corrupt entries; return how many were removed."""
        if not self._dir.is_dir():
            return 0
        removed = 0
        for path in self._dir.glob("*.json"):
            if not path.name.startswith(_PREFIXES):
                continue
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
                stale = self._clock() - float(raw["timestamp"]) >= self._ttl
            except (OSError, ValueError, KeyError, TypeError):
                stale = True
            if stale:
                self._unlink(path)
                removed += 1
        if removed:
            logger.debug("Purged %d expired cache entries", removed)
        return removed

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def _write(self, path: Path, entry: CachedSession) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so readers never see a half-written file.
        fd, tmp = tempfile.mkstemp(dir=self._dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(entry.model_dump_json())
            os.replace(tmp, path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise

    @staticmethod
    def _unlink(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove cache file %s: %s", path.name, exc)
