# Detached fire-and-forget work (last-used stamps, session-scope durability).
# Created: 2026-10-19

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable

logger = logging.getLogger(__name__)


class BackgroundWriter:
    """Runs best-effort coroutines outside the request that scheduled them.

    Each write is its own task on the running loop, independent of the task
    that scheduled it, so a cancelled request does not cancel its pending
    write. Failures are logged and swallowed. References are held until
    completion so tasks are not collected.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def submit(self, coro: Awaitable[object], *, description: str = "background write") -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller): run to completion instead of dropping the write.
            asyncio.run(self._run(coro, description))
            return
        task = loop.create_task(self._run(coro, description))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _run(coro: Awaitable[object], description: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.warning("%s cancelled before completion", description)
            raise
        except Exception:
            logger.warning("%s failed", description, exc_info=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = 5.0) -> None:
        """Wait for all scheduled writes (shutdown, tests)."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("%d background writes still pending after drain", len(pending))
