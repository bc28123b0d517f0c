from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")


class TaskHandle(Generic[T]):
    """Handle to background work: read status, await the result, ask it to stop.

    Cancellation is a request, not an interrupt; the work polls
    :attr:`cancel_requested` at its own safe points.
    """

    def __init__(self, name: str, work: Callable[["TaskHandle[T]"], Awaitable[T]]):
        self.name = name
        self._cancel = asyncio.Event()
        self._task: asyncio.Task[T] = asyncio.create_task(self._run(work), name=name)

    async def _run(self, work: Callable[["TaskHandle[T]"], Awaitable[T]]) -> T:
        try:
            return await work(self)
        except Exception:
            logger.exception("Background task {} failed", self.name)
            raise

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        self._cancel.set()

    def done(self) -> bool:
        return self._task.done()

    def status(self) -> str:
        if not self._task.done():
            return "cancelling" if self.cancel_requested else "running"
        if self._task.cancelled():
            return "cancelled"
        return "failed" if self._task.exception() is not None else "done"

    async def wait(self) -> T:
        return await self._task
