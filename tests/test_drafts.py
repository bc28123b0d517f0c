from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

from loguru import logger
import pytest

from storybook_agents.domain.errors import NotFoundError
from storybook_agents.domain.models import (
    ArtStyleDecision,
    AssetRef,
    Character,
    Page,
    Run,
    VisualIdentity,
)
from storybook_agents.domain.phases import Phase, RunStatus
from storybook_agents.pipeline.drafts import DraftStore, encode_snapshot
from storybook_agents.storage.db import DatabaseService, build_sqlite_url


async def _db(tmp_path: Path) -> DatabaseService:
    service = DatabaseService(build_sqlite_url(tmp_path / "drafts_test.db"))
    await service.init_models()
    return service


def _run(**overrides) -> Run:
    values = {
        "id": "run-1",
        "phase": Phase.AWAITING_PROMPT_REVIEW,
        "status": RunStatus.AWAITING_INPUT,
        "progress": 60,
        "story": "Mia and Bo sail to the lighthouse.",
        "owner_id": "owner-a",
        "title": "The Lighthouse",
        "art_style_decision": ArtStyleDecision(
            selected_style="illustration", style_prompt="storybook art", source="user_preference"
        ),
        "characters": [
            Character(
                name="Mia",
                role="main",
                visual_identity=VisualIdentity(hair_color="red", distinctive_features=["freckles"]),
                consistency_tag="red hair, freckles",
                avatar=AssetRef(location="/assets/avatars/mia.png", used_references=False),
                avatar_generated=True,
            )
        ],
        "pages": [
            Page(page_number=1, text="They set sail.", characters_in_scene=["Mia"]),
            Page(page_number=2, text="The storm came."),
        ],
    }
    values.update(overrides)
    return Run(**values)


def test_save_then_load_reconstructs_equal_run(tmp_path: Path) -> None:
    async def _case() -> None:
        db = await _db(tmp_path)
        try:
            store = DraftStore(db.session_scope)
            run = _run()

            assert await store.save(run) is True
            loaded = await store.load("run-1")

            assert loaded == run
            assert encode_snapshot(loaded) == encode_snapshot(run)
        finally:
            await db.dispose()

    asyncio.run(_case())


def test_save_upserts_and_derives_current_step(tmp_path: Path) -> None:
    async def _case() -> None:
        db = await _db(tmp_path)
        try:
            store = DraftStore(db.session_scope)
            await store.save(_run(phase=Phase.ART_STYLE_SELECTION, progress=20))
            await store.save(_run())

            summaries = await store.list("owner-a")
            assert len(summaries) == 1
            assert summaries[0].phase == Phase.AWAITING_PROMPT_REVIEW.value
            assert summaries[0].current_step == 3

            assert await store.delete("run-1") is True
            with pytest.raises(NotFoundError):
                await store.load("run-1")
        finally:
            await db.dispose()

    asyncio.run(_case())


def test_errored_run_does_not_replace_last_good_snapshot(tmp_path: Path) -> None:
    async def _case() -> None:
        db = await _db(tmp_path)
        try:
            store = DraftStore(db.session_scope)
            good = _run()
            await store.save(good)

            saved = await store.save(_run(status=RunStatus.ERROR, error="boom"))

            assert saved is False
            assert await store.load("run-1") == good
        finally:
            await db.dispose()

    asyncio.run(_case())


def test_save_failure_is_logged_and_swallowed() -> None:
    @asynccontextmanager
    async def _broken_session():
        raise RuntimeError("database is locked")
        yield

    records: list = []
    sink_id = logger.add(lambda message: records.append(message.record), level="WARNING")
    try:
        saved = asyncio.run(DraftStore(_broken_session).save(_run()))
    finally:
        logger.remove(sink_id)

    assert saved is False
    assert any("Draft save failed: database is locked" in record["message"] for record in records)
