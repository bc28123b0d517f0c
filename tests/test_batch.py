from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest

from storybook_agents.config.schema import AppConfigRoot
from storybook_agents.domain.errors import UpstreamServiceError, ValidationError
from storybook_agents.domain.models import AssetRef, Character, Cover, Page, Run, apply_illustration_result
from storybook_agents.domain.phases import BatchStatus, Phase, RunStatus
from storybook_agents.llm.images import GeneratedImage
from storybook_agents.pipeline.batch import BatchExecutor
from storybook_agents.pipeline.context import PipelineContext
from storybook_agents.pipeline.drafts import DraftStore
from storybook_agents.pipeline.generation import GenerationAdapter
from storybook_agents.pipeline.registry import RunRegistry
from storybook_agents.storage.db import DatabaseService, build_sqlite_url


class _FakeImages:
    def __init__(self, *, on_call: Callable[[int], None] | None = None, fail_on: set[int] | None = None) -> None:
        self.calls = 0
        self.prompts: list[str] = []
        self.on_call = on_call
        self.fail_on = fail_on or set()

    async def generate_image(self, prompt: str) -> GeneratedImage:
        self.calls += 1
        self.prompts.append(prompt)
        if self.on_call is not None:
            self.on_call(self.calls)
        if self.calls in self.fail_on:
            raise UpstreamServiceError(f"call {self.calls} failed")
        return GeneratedImage(data=b"png", url=None, model="fake")

    async def generate_image_with_references(self, prompt: str, references: Sequence[str]) -> GeneratedImage:
        raise UpstreamServiceError("references unsupported")


class _FakeStore:
    async def put(self, data: bytes, *, kind: str, name: str, suffix: str = ".png") -> str:
        return f"/assets/{kind}s/{name}{suffix}"

    async def fetch(self, url: str) -> bytes:
        return b""


class _UnusedText:
    async def generate_structured(self, *args: Any, **kwargs: Any) -> Any:
        raise AssertionError("text service must not be called by a batch")


def _context(images: _FakeImages) -> PipelineContext:
    config = AppConfigRoot()
    config.pipeline.reference_conditioning_enabled = False
    return PipelineContext(
        config=config,
        style_llm=_UnusedText(),
        character_llm=_UnusedText(),
        page_llm=_UnusedText(),
        images=GenerationAdapter(images, _FakeStore(), references_enabled=False),
    )


def _run(*, pages: int = 5, illustrated: Sequence[int] = (), cover: bool = True) -> Run:
    items = []
    for number in range(1, pages + 1):
        page = Page(page_number=number, text=f"page {number}", image_description=f"scene {number}")
        if number in illustrated:
            page = apply_illustration_result(page, AssetRef(location=f"/old/{number}.png"))
        items.append(page)
    return Run(
        id="run-1",
        story="A story",
        phase=Phase.AWAITING_PROMPT_REVIEW,
        status=RunStatus.AWAITING_INPUT,
        progress=60,
        title="The Lighthouse",
        generate_cover=cover,
        characters=[Character(name="Mia", role="main", consistency_tag="red hair")],
        pages=items,
        cover=Cover(title="The Lighthouse") if cover else None,
    )


async def _setup(tmp_path: Path, images: _FakeImages, run: Run):
    db = DatabaseService(build_sqlite_url(tmp_path / "batch_test.db"))
    await db.init_models()
    registry = RunRegistry()
    registry.put(run)
    executor = BatchExecutor(
        registry=registry,
        ctx=_context(images),
        drafts=DraftStore(db.session_scope),
        session_factory=db.session_scope,
    )
    return db, registry, executor


def test_batch_counts_cover_in_total_units(tmp_path: Path) -> None:
    async def _case() -> None:
        db, registry, executor = await _setup(tmp_path, _FakeImages(), _run())
        try:
            row = await executor.create("run-1")
            assert row.total_units == 6
            assert row.status == "pending"

            outcome = await executor.execute(row.id, "run-1")
            assert outcome.status == BatchStatus.COMPLETED
            assert outcome.completed_units == 6

            run = registry.get("run-1")
            assert all(page.is_illustrated for page in run.pages)
            assert run.cover is not None and run.cover.is_illustrated
            assert run.phase == Phase.AWAITING_PAGE_REVIEW
            assert run.progress == 95

            stored = await executor.get(row.id)
            assert stored.status == "completed"
            assert stored.completed_units == 6
        finally:
            await db.dispose()

    asyncio.run(_case())


def test_cancel_after_three_pages_stops_further_units(tmp_path: Path) -> None:
    async def _case() -> None:
        cancelled = {"flag": False}

        def _cancel_after_third(call: int) -> None:
            if call == 3:
                cancelled["flag"] = True

        images = _FakeImages(on_call=_cancel_after_third)
        db, registry, executor = await _setup(tmp_path, images, _run())
        try:
            row = await executor.create("run-1")
            outcome = await executor.execute(row.id, "run-1", cancel_requested=lambda: cancelled["flag"])

            assert outcome.status == BatchStatus.CANCELLED
            assert outcome.completed_units == 3
            assert images.calls == 3

            stored = await executor.get(row.id)
            assert stored.status == "cancelled"
            assert stored.completed_units == 3
            assert stored.total_units == 6

            run = registry.get("run-1")
            assert [page.is_illustrated for page in run.pages] == [True, True, True, False, False]
            assert run.phase == Phase.AWAITING_PAGE_REVIEW
        finally:
            await db.dispose()

    asyncio.run(_case())


def test_rerun_skips_already_illustrated_pages(tmp_path: Path) -> None:
    async def _case() -> None:
        images = _FakeImages()
        db, registry, executor = await _setup(tmp_path, images, _run(illustrated=(1, 3), cover=False))
        try:
            row = await executor.create("run-1")
            assert row.total_units == 5

            outcome = await executor.execute(row.id, "run-1")

            assert images.calls == 3
            assert outcome.completed_units == 5
            run = registry.get("run-1")
            assert run.find_page(1).illustration.location == "/old/1.png"

            second = await executor.create("run-1")
            await executor.execute(second.id, "run-1")
            assert images.calls == 3
        finally:
            await db.dispose()

    asyncio.run(_case())


def test_unit_failure_does_not_abort_batch(tmp_path: Path) -> None:
    async def _case() -> None:
        images = _FakeImages(fail_on={2})
        db, registry, executor = await _setup(tmp_path, images, _run(pages=3, cover=False))
        try:
            row = await executor.create("run-1")
            outcome = await executor.execute(row.id, "run-1")

            assert outcome.status == BatchStatus.COMPLETED
            assert outcome.completed_units == 2
            assert outcome.failed_units == ["page 2"]
            run = registry.get("run-1")
            assert [page.is_illustrated for page in run.pages] == [True, False, True]

            stored = await executor.get(row.id)
            assert stored.error_message == "Units failed: page 2"
        finally:
            await db.dispose()

    asyncio.run(_case())


def test_only_one_active_batch_per_run(tmp_path: Path) -> None:
    async def _case() -> None:
        db, _, executor = await _setup(tmp_path, _FakeImages(), _run())
        try:
            await executor.create("run-1")
            with pytest.raises(ValidationError):
                await executor.create("run-1")
        finally:
            await db.dispose()

    asyncio.run(_case())


def test_cancel_without_live_handle_updates_status(tmp_path: Path) -> None:
    async def _case() -> None:
        db, _, executor = await _setup(tmp_path, _FakeImages(), _run())
        try:
            row = await executor.create("run-1")

            cancelled = await executor.cancel(row.id)
            assert cancelled.status == "cancelled"

            with pytest.raises(ValidationError):
                await executor.cancel(row.id)
        finally:
            await db.dispose()

    asyncio.run(_case())


def test_started_batch_handle_reports_outcome(tmp_path: Path) -> None:
    async def _case() -> None:
        images = _FakeImages()
        db, _, executor = await _setup(tmp_path, images, _run(pages=2, cover=False))
        try:
            handle = executor.start(await executor.create("run-1"))
            outcome = await handle.wait()

            assert handle.done()
            assert handle.status() == "done"
            assert outcome.status == BatchStatus.COMPLETED
            assert images.calls == 2
        finally:
            await db.dispose()

    asyncio.run(_case())


def test_batch_recovers_run_after_failed_illustration_phase(tmp_path: Path) -> None:
    async def _case() -> None:
        failed = _run(illustrated=(1,), cover=False).model_copy(
            update={
                "phase": Phase.ILLUSTRATION_GENERATION,
                "status": RunStatus.ERROR,
                "progress": 72,
                "error": "page 2 timed out",
            }
        )
        images = _FakeImages()
        db, registry, executor = await _setup(tmp_path, images, failed)
        try:
            row = await executor.create("run-1")
            outcome = await executor.execute(row.id, "run-1")

            assert outcome.status == BatchStatus.COMPLETED
            assert outcome.completed_units == 5
            assert images.calls == 4

            run = registry.get("run-1")
            assert all(page.is_illustrated for page in run.pages)
            assert run.phase == Phase.AWAITING_PAGE_REVIEW
            assert run.status == RunStatus.AWAITING_INPUT
            assert run.error is None

            draft = await executor.drafts.load("run-1")
            assert draft.phase == Phase.AWAITING_PAGE_REVIEW
            assert all(page.is_illustrated for page in draft.pages)
        finally:
            await db.dispose()

    asyncio.run(_case())


def test_batch_recovers_run_after_failed_cover(tmp_path: Path) -> None:
    async def _case() -> None:
        failed = _run(pages=2, illustrated=(1, 2)).model_copy(
            update={"phase": Phase.COVER_GENERATION, "status": RunStatus.ERROR, "error": "cover timed out"}
        )
        images = _FakeImages()
        db, registry, executor = await _setup(tmp_path, images, failed)
        try:
            outcome = await executor.execute((await executor.create("run-1")).id, "run-1")

            assert outcome.status == BatchStatus.COMPLETED
            assert images.calls == 1
            run = registry.get("run-1")
            assert run.cover.is_illustrated
            assert run.phase == Phase.AWAITING_PAGE_REVIEW
            assert run.error is None
        finally:
            await db.dispose()

    asyncio.run(_case())
