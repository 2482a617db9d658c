"""Cancellable poll timer and the adaptive interval schedule."""

from __future__ import annotations

import asyncio
import logging
from typing import Coroutine, Optional

logger = logging.getLogger(__name__)


def poll_interval(attempts: int, fast: float, slow: float, max_fast_polls: int) -> float:
    """Return the wait before the next poll.

    ``attempts`` is the number of polls already made without a result.  The
    first ``max_fast_polls`` attempts wait ``fast`` seconds, every later one
    ``slow`` seconds.
    """
    return fast if attempts < max_fast_polls else slow


class PollTimer:
    """Runs one polling task at a time, tagged with its session generation.

    Starting a new task or calling :meth:`cancel` cancels the previous one, so
    at most one polling loop exists per timer.
    """

    def __init__(self) -> None:
        self._task: Optional[asyncio.Task] = None
        self.generation: Optional[int] = None

    def start(self, generation: int, coro: Coroutine) -> asyncio.Task:
        self.cancel()
        self.generation = generation
        self._task = asyncio.get_running_loop().create_task(coro)
        logger.debug("poll timer started for generation %d", generation)
        return self._task

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("poll timer cancelled for generation %s", self.generation)
        self._task = None
        self.generation = None

    async def wait(self) -> None:
        """Wait for the current task to finish, whether it ends or is cancelled."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
