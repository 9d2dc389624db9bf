"""SideEffectDispatcher: runs post-commit work off the request path.

A successful submission yields a list of :class:`SideEffect` jobs (admin
e-mail, newsletter sign-up, cache snapshot).  The route hands them to the
dispatcher only after its transaction committed; the response does not
wait for them and their failures never change the response.

Lifecycle (driven by the server lifespan)::

    dispatcher = SideEffectDispatcher()
    await dispatcher.start()
    dispatcher.dispatch(outcome.side_effects)
    ...
    await dispatcher.stop()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SideEffect:
    """A named, zero-argument coroutine factory."""

    name: str
    run: Callable[[], Awaitable[None]]


class SideEffectDispatcher:
    """Bounded queue drained by one background worker task.

    Args:
        maxsize: queued jobs beyond this are dropped (and logged)
    """

    def __init__(self, maxsize: int = 1000) -> None:
        self._queue: asyncio.Queue[SideEffect] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="side-effects")
            logger.info("Side-effect dispatcher started")

    async def stop(self, timeout: float = 10.0) -> None:
        """Drain what is queued (up to ``timeout``), then stop the worker."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except TimeoutError:
            logger.warning(
                "Stopping dispatcher with %d side effects still queued",
                self._queue.qsize(),
            )
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Side-effect dispatcher stopped")

    def dispatch(self, effects: Iterable[SideEffect]) -> None:
        """Enqueue jobs without waiting for them."""
        for effect in effects:
            try:
                self._queue.put_nowait(effect)
            except asyncio.QueueFull:
                logger.error("Side-effect queue full, dropping %s", effect.name)

    async def run_pending(self) -> int:
        """Run every queued job inline and return how many ran.

        For callers without a running worker (scripts, tests).
        """
        ran = 0
        while not self._queue.empty():
            await self._execute(self._queue.get_nowait())
            ran += 1
        return ran

    async def _run(self) -> None:
        while True:
            effect = await self._queue.get()
            await self._execute(effect)

    async def _execute(self, effect: SideEffect) -> None:
        try:
            await effect.run()
            logger.debug("Side effect %s done", effect.name)
        except Exception:
            logger.exception("Side effect %s failed", effect.name)
        finally:
            self._queue.task_done()
