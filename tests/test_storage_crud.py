from __future__ import annotations

import asyncio
from pathlib import Path

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from storybook_agents.storage.base import Base, import_all_models
from storybook_agents.storage.repo import SQLAlchemyRepo


async def _build_test_db(tmp_path: Path):
    db_path = tmp_path / "storybook_test.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path.as_posix()}", future=True)
    import_all_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


def _draft_values(**overrides):
    values = {
        "run_id": "run-1",
        "owner_id": "owner-a",
        "phase": "art_style_selection",
        "status": "awaiting_input",
        "current_step": 1,
        "progress": 20,
        "title": None,
        "snapshot_json": '{"id":"run-1"}',
        "snapshot_hash": "h1",
    }
    values.update(overrides)
    return values


def test_draft_upsert_is_keyed_by_run_id(tmp_path: Path) -> None:
    async def _run() -> None:
        engine = await _build_test_db(tmp_path)
        session_maker = async_sessionmaker(engine, expire_on_commit=False)
        try:
            async with session_maker() as session:
                repo = SQLAlchemyRepo(session)

                first = await repo.upsert_draft(**_draft_values())
                second = await repo.upsert_draft(
                    **_draft_values(phase="awaiting_prompt_review", current_step=3, progress=60, title="T")
                )
                await repo.upsert_draft(**_draft_values(run_id="run-2", owner_id="owner-b"))
                await session.commit()

                assert first.inserted is True
                assert second.inserted is False
                assert second.id == first.id

                draft = await repo.get_draft("run-1")
                assert draft is not None
                assert draft.phase == "awaiting_prompt_review"
                assert draft.current_step == 3
                assert draft.title == "T"

                owned = await repo.list_drafts(owner_id="owner-a")
                assert [row.run_id for row in owned] == ["run-1"]

                assert await repo.delete_draft("run-1") is True
                assert await repo.get_draft("run-1") is None
        finally:
            await engine.dispose()

    asyncio.run(_run())


def test_story_insert_keeps_children_in_page_order(tmp_path: Path) -> None:
    async def _run() -> None:
        engine = await _build_test_db(tmp_path)
        session_maker = async_sessionmaker(engine, expire_on_commit=False)
        try:
            async with session_maker() as session:
                repo = SQLAlchemyRepo(session)
                story_id = await repo.insert_story(
                    story={
                        "run_id": "run-1",
                        "owner_id": "owner-a",
                        "title": "The Lighthouse",
                        "summary": "A brave girl",
                        "art_style": "illustration",
                        "art_style_prompt": "storybook",
                        "page_count": 2,
                        "target_audience": "children",
                        "cover_location": "/c.png",
                        "snapshot_json": "{}",
                    },
                    characters=[{"name": "Mia", "role": "main", "consistency_tag": "red hair"}],
                    pages=[
                        {"page_number": 2, "text": "second", "characters_json": "[]"},
                        {"page_number": 1, "text": "first", "characters_json": '["Mia"]'},
                    ],
                )
                await session.commit()

                story = await repo.get_story(story_id)
                assert story is not None
                assert story.title == "The Lighthouse"
                assert [page.page_number for page in story.pages] == [1, 2]
                assert story.characters[0].consistency_tag == "red hair"

                listed = await repo.list_stories(owner_id="owner-a")
                assert [row.id for row in listed] == [story_id]

                assert await repo.delete_story(story_id) is True
                assert await repo.get_story(story_id) is None
        finally:
            await engine.dispose()

    asyncio.run(_run())


def test_batch_request_lifecycle(tmp_path: Path) -> None:
    async def _run() -> None:
        engine = await _build_test_db(tmp_path)
        session_maker = async_sessionmaker(engine, expire_on_commit=False)
        try:
            async with session_maker() as session:
                repo = SQLAlchemyRepo(session)
                batch_id = await repo.create_batch_request(
                    run_id="run-1", owner_id="owner-a", story_title="T", total_units=6
                )
                await session.commit()

                pending = await repo.get_batch_request(batch_id)
                assert pending is not None
                assert pending.status == "pending"
                assert pending.completed_units == 0

                active = await repo.get_active_batch_for_run("run-1")
                assert active is not None and active.id == batch_id

                await repo.mark_batch_processing(batch_id)
                await repo.update_batch_progress(batch_id, 3)
                await repo.mark_batch_finished(batch_id, status="cancelled", completed_units=3)
                await session.commit()

                finished = await repo.get_batch_request(batch_id)
                assert finished is not None
                assert finished.status == "cancelled"
                assert finished.completed_units == 3
                assert finished.started_at is not None
                assert finished.completed_at is not None
                assert await repo.get_active_batch_for_run("run-1") is None
                assert [row.id for row in await repo.list_batch_requests(run_id="run-1")] == [batch_id]
        finally:
            await engine.dispose()

    asyncio.run(_run())
