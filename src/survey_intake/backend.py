"""Timeout and error translation around persistence / object-storage calls.

Wrap every call that leaves the process::

    async with backend_call("insert answers", session_id=sid):
        await repo.insert_batch(db, sid, rows)

Anything other than an :class:`IntakeError` raised inside the block, and any
call exceeding :data:`BACKEND_TIMEOUT_SECONDS`, is logged with the given
context and re-raised as a generic :class:`InternalError`, so backend detail
never reaches the client.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from survey_intake.constants import BACKEND_TIMEOUT_SECONDS
from survey_intake.errors import IntakeError, InternalError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def backend_call(
    operation: str,
    timeout: float | None = BACKEND_TIMEOUT_SECONDS,
    **context,
) -> AsyncIterator[None]:
    ctx = " ".join(f"{k}={v}" for k, v in context.items())
    try:
        async with asyncio.timeout(timeout):
            yield
    except IntakeError:
        raise
    except TimeoutError:
        logger.error("Backend timeout after %ss during %s %s", timeout, operation, ctx)
        raise InternalError() from None
    except Exception as exc:
        logger.exception("Backend failure during %s %s", operation, ctx)
        raise InternalError() from exc
