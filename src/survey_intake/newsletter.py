"""Newsletter subscription: an upsert keyed by the lower-cased e-mail."""

from __future__ import annotations

import enum
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from survey_db.models.newsletter import NewsletterSubscriber
from survey_db.repository import NewsletterRepository
from survey_intake.backend import backend_call
from survey_intake.constants import DEFAULT_LOCALE
from survey_intake.sanitize import sanitize_text

logger = logging.getLogger(__name__)


class SubscribeOutcome(str, enum.Enum):
    CREATED = "created"
    REACTIVATED = "reactivated"
    ALREADY_ACTIVE = "already_active"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _clean_name(value: str | None) -> str | None:
    if not value:
        return None
    return sanitize_text(value, 100) or None


class NewsletterService:
    def __init__(self, repo: NewsletterRepository | None = None) -> None:
        self._repo = repo or NewsletterRepository()

    async def subscribe(
        self,
        db: AsyncSession,
        *,
        email: str,
        first_name: str | None = None,
        last_name: str | None = None,
        locale: str = DEFAULT_LOCALE,
        source: str = "website",
    ) -> tuple[SubscribeOutcome, NewsletterSubscriber]:
        """Create, reactivate, or leave alone the subscriber row for ``email``."""
        address = normalize_email(email)
        first = _clean_name(first_name)
        last = _clean_name(last_name)

        async with backend_call("newsletter subscribe", source=source):
            row = await self._repo.get_by_email(db, address)
            if row is None:
                row = await self._repo.create(
                    db, email=address, first_name=first, last_name=last,
                    locale=locale, source=source,
                )
                outcome = SubscribeOutcome.CREATED
            elif row.active:
                outcome = SubscribeOutcome.ALREADY_ACTIVE
            else:
                row = await self._repo.reactivate(
                    db, row, first_name=first, last_name=last,
                )
                outcome = SubscribeOutcome.REACTIVATED

        logger.info("Newsletter subscribe from %s: %s", source, outcome.value)
        return outcome, row
