from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Callable

import orjson
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from storybook_agents.domain.errors import NotFoundError
from storybook_agents.domain.hashing import snapshot_hash
from storybook_agents.domain.models import Run
from storybook_agents.domain.phases import RunStatus, current_step
from storybook_agents.llm.json_utils import dumps_sorted
from storybook_agents.storage.db import session_scope
from storybook_agents.storage.repo import SQLAlchemyRepo

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# Statuses whose snapshot would replace the last resumable one.
_UNSAVED_STATUSES = {RunStatus.ERROR, RunStatus.COMPLETE}


@dataclass
class DraftSummary:
    run_id: str
    title: str | None
    phase: str
    status: str
    current_step: int
    progress: int


def encode_snapshot(run: Run) -> str:
    return dumps_sorted(run.model_dump(mode="json"))


def decode_snapshot(snapshot_json: str) -> Run:
    return Run.model_validate(orjson.loads(snapshot_json))


class DraftStore:
    """Best-effort persistence of run snapshots keyed by run id."""

    def __init__(self, session_factory: SessionFactory = session_scope):
        self._session_factory = session_factory

    async def save(self, run: Run) -> bool:
        """Upsert the run's snapshot. Failures are logged, never raised."""
        if run.status in _UNSAVED_STATUSES:
            return False

        snapshot_json = encode_snapshot(run)
        try:
            async with self._session_factory() as session:
                await SQLAlchemyRepo(session).upsert_draft(
                    run_id=run.id,
                    owner_id=run.owner_id,
                    phase=run.phase.value,
                    status=run.status.value,
                    current_step=current_step(run.phase, run.status),
                    progress=run.progress,
                    title=run.title,
                    snapshot_json=snapshot_json,
                    snapshot_hash=snapshot_hash(snapshot_json),
                )
        except Exception as exc:  # noqa: BLE001
            logger.bind(run_id=run.id, phase=run.phase.value).warning("Draft save failed: {}", exc)
            return False
        return True

    async def load(self, run_id: str) -> Run:
        async with self._session_factory() as session:
            row = await SQLAlchemyRepo(session).get_draft(run_id)
        if row is None:
            raise NotFoundError("Draft", run_id)
        if snapshot_hash(row.snapshot_json) != row.snapshot_hash:
            logger.bind(run_id=run_id).warning("Draft snapshot hash mismatch; loading anyway")
        return decode_snapshot(row.snapshot_json)

    async def delete(self, run_id: str) -> bool:
        async with self._session_factory() as session:
            return await SQLAlchemyRepo(session).delete_draft(run_id)

    async def list(self, owner_id: str | None = None, limit: int = 50) -> list[DraftSummary]:
        async with self._session_factory() as session:
            rows = await SQLAlchemyRepo(session).list_drafts(owner_id=owner_id, limit=limit)
        return [
            DraftSummary(
                run_id=row.run_id,
                title=row.title,
                phase=row.phase,
                status=row.status,
                current_step=row.current_step,
                progress=row.progress,
            )
            for row in rows
        ]
