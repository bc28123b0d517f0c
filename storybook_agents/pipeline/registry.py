from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from loguru import logger

from storybook_agents.domain.errors import NotFoundError
from storybook_agents.domain.models import Run


class RunRegistry:
    """In-memory home of live runs.

    Callers mutate a run only inside ``lock(run_id)``; operations on different
    run ids never contend.
    """

    def __init__(self) -> None:
        self._runs: dict[str, Run] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, run_id: str) -> Run:
        try:
            return self._runs[run_id]
        except KeyError:
            raise NotFoundError("Run", run_id) from None

    def find(self, run_id: str) -> Run | None:
        return self._runs.get(run_id)

    def put(self, run: Run) -> Run:
        self._runs[run.id] = run
        return run

    def ids(self) -> list[str]:
        return list(self._runs)

    def is_locked(self, run_id: str) -> bool:
        lock = self._locks.get(run_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def lock(self, run_id: str) -> AsyncIterator[None]:
        run_lock = self._locks.setdefault(run_id, asyncio.Lock())
        if run_lock.locked():
            logger.bind(run_id=run_id).debug("Waiting for in-flight operation on run")
        async with run_lock:
            yield
