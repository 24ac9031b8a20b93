"""Cancellable timer used to coalesce bursts of user input."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """Run a callback once input has been quiet for ``delay`` seconds.

    Every call to :meth:`schedule` cancels the pending timer before starting a
    new one, so only the last callback in a burst fires.
    """

    def __init__(self, delay: float, *, name: str = "debounce"):
        self._delay = delay
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, callback: Callable[[], object]) -> None:
        self.cancel()

        async def _runner() -> None:
            await asyncio.sleep(self._delay)
            callback()

        self._task = asyncio.create_task(_runner(), name=self._name)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            logger.debug("Cancelling pending %s timer", self._name)
            self._task.cancel()
        self._task = None

    async def wait(self) -> None:
        """Wait for the pending timer, if any, to fire or be cancelled."""

        task = self._task
        if task is None:
            return
        with suppress(asyncio.CancelledError):
            await task

    async def aclose(self) -> None:
        task = self._task
        self.cancel()
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task
