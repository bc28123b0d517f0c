from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from storybook_agents.storage.batches import crud as batches_crud
from storybook_agents.storage.drafts import crud as drafts_crud
from storybook_agents.storage.stories import crud as stories_crud
from storybook_agents.storage.types import BatchRequestRow, DraftRow, InsertResult, StoryRow


class SQLAlchemyRepo:
    def __init__(self, session: AsyncSession):
        self.session = session

    # drafts

    async def upsert_draft(
        self,
        *,
        run_id: str,
        owner_id: str | None,
        phase: str,
        status: str,
        current_step: int,
        progress: int,
        title: str | None,
        snapshot_json: str,
        snapshot_hash: str,
    ) -> InsertResult:
        return await drafts_crud.upsert_draft(
            self.session,
            run_id=run_id,
            owner_id=owner_id,
            phase=phase,
            status=status,
            current_step=current_step,
            progress=progress,
            title=title,
            snapshot_json=snapshot_json,
            snapshot_hash=snapshot_hash,
        )

    async def get_draft(self, run_id: str) -> DraftRow | None:
        return await drafts_crud.get_draft(self.session, run_id)

    async def list_drafts(self, owner_id: str | None = None, limit: int = 50) -> list[DraftRow]:
        return await drafts_crud.list_drafts(self.session, owner_id=owner_id, limit=limit)

    async def delete_draft(self, run_id: str) -> bool:
        return await drafts_crud.delete_draft(self.session, run_id)

    # stories

    async def insert_story(
        self,
        *,
        story: dict[str, Any],
        characters: list[dict[str, Any]],
        pages: list[dict[str, Any]],
    ) -> int:
        return await stories_crud.insert_story(self.session, story=story, characters=characters, pages=pages)

    async def get_story(self, story_id: int) -> StoryRow | None:
        return await stories_crud.get_story(self.session, story_id)

    async def list_stories(self, owner_id: str | None = None, limit: int = 50) -> list[StoryRow]:
        return await stories_crud.list_stories(self.session, owner_id=owner_id, limit=limit)

    async def delete_story(self, story_id: int) -> bool:
        return await stories_crud.delete_story(self.session, story_id)

    # batch requests

    async def create_batch_request(
        self,
        *,
        run_id: str,
        owner_id: str | None,
        story_title: str | None,
        total_units: int,
    ) -> int:
        return await batches_crud.create_batch_request(
            self.session,
            run_id=run_id,
            owner_id=owner_id,
            story_title=story_title,
            total_units=total_units,
        )

    async def get_batch_request(self, batch_id: int) -> BatchRequestRow | None:
        return await batches_crud.get_batch_request(self.session, batch_id)

    async def get_active_batch_for_run(self, run_id: str) -> BatchRequestRow | None:
        return await batches_crud.get_active_batch_for_run(self.session, run_id)

    async def list_batch_requests(
        self,
        owner_id: str | None = None,
        run_id: str | None = None,
        limit: int = 50,
    ) -> list[BatchRequestRow]:
        return await batches_crud.list_batch_requests(self.session, owner_id=owner_id, run_id=run_id, limit=limit)

    async def mark_batch_processing(self, batch_id: int) -> None:
        await batches_crud.mark_processing(self.session, batch_id)

    async def update_batch_progress(self, batch_id: int, completed_units: int) -> None:
        await batches_crud.update_progress(self.session, batch_id, completed_units=completed_units)

    async def mark_batch_finished(
        self,
        batch_id: int,
        *,
        status: str,
        completed_units: int | None = None,
        error_message: str | None = None,
    ) -> None:
        await batches_crud.mark_finished(
            self.session,
            batch_id,
            status=status,
            completed_units=completed_units,
            error_message=error_message,
        )
