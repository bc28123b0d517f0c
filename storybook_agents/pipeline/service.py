from __future__ import annotations

import uuid
from contextlib import AbstractAsyncContextManager
from typing import Awaitable, Callable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from storybook_agents.config.schema import AppConfigRoot
from storybook_agents.domain.errors import NotFoundError, ValidationError
from storybook_agents.domain import models
from storybook_agents.domain.models import Character, Page, Run
from storybook_agents.domain.phases import Phase, RunStatus
from storybook_agents.pipeline.batch import BatchExecutor, BatchHandle
from storybook_agents.pipeline.context import PipelineContext, build_context
from storybook_agents.pipeline.drafts import DraftStore, DraftSummary
from storybook_agents.pipeline.graph import build_storybook_graph
from storybook_agents.pipeline.nodes import (
    art_style,
    avatar_generate,
    character_extract,
    finalize as finalize_node,
    illustrate,
    page_generate,
)
from storybook_agents.pipeline.page_count import check_page_count
from storybook_agents.pipeline.registry import RunRegistry
from storybook_agents.pipeline.run import PhaseResult, advance, restart_page_generation
from storybook_agents.pipeline.tasks import TaskHandle
from storybook_agents.storage.db import session_scope
from storybook_agents.storage.repo import SQLAlchemyRepo
from storybook_agents.storage.types import BatchRequestRow

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
Handler = Callable[[Run], Awaitable[PhaseResult]]

# Phases in which pages exist and may be edited or illustrated one at a time.
_PAGE_EDIT_PHASES = frozenset(
    {
        Phase.AWAITING_PROMPT_REVIEW,
        Phase.ILLUSTRATION_GENERATION,
        Phase.COVER_GENERATION,
        Phase.AWAITING_PAGE_REVIEW,
    }
)
_CHARACTER_EDIT_PHASES = frozenset(
    {
        Phase.AWAITING_AVATAR_INPUT,
        Phase.AVATAR_GENERATION,
        Phase.AWAITING_APPROVAL,
        *_PAGE_EDIT_PHASES,
    }
)


class StorybookService:
    """Named operations on storybook runs.

    Every mutation of a run happens inside the registry lock for its id, so a
    phase handler, a single-unit action and a batch never interleave on one run.
    """

    def __init__(
        self,
        config: AppConfigRoot,
        *,
        ctx: PipelineContext | None = None,
        registry: RunRegistry | None = None,
        session_factory: SessionFactory = session_scope,
    ):
        self.config = config
        self.ctx = ctx or build_context(config)
        self.registry = registry or RunRegistry()
        self._session_factory = session_factory
        self.drafts = DraftStore(session_factory)
        self.batches = BatchExecutor(
            registry=self.registry,
            ctx=self.ctx,
            drafts=self.drafts,
            session_factory=session_factory,
        )

    # helpers

    async def _run_phase(
        self,
        run_id: str,
        phase: Phase,
        handler: Handler,
        *,
        progress: int | None = None,
        message: str = "",
        prepare: Callable[[Run], Run] | None = None,
        start: bool = True,
    ) -> Run:
        async with self.registry.lock(run_id):
            run_state = self.registry.get(run_id)
            if prepare is not None:
                run_state = prepare(run_state)
            if start:
                run_state = advance(run_state, PhaseResult.started(phase, progress=progress, message=message))
            self.registry.put(run_state)

            log = logger.bind(run_id=run_id, phase=phase.value)
            try:
                result = await handler(run_state)
                run_state = self.registry.put(advance(run_state, result))
            except Exception as exc:
                # The handler may have kept partial work in the registry.
                self.registry.put(advance(self.registry.get(run_id), PhaseResult.failed(phase, str(exc))))
                log.error("Phase failed: {}", exc)
                raise
            log.info("Phase done -> {} ({}%)", run_state.phase.value, run_state.progress)
            await self.drafts.save(run_state)
            return run_state

    async def _mutate(self, run_id: str, change: Callable[[Run], Awaitable[Run]]) -> Run:
        """Apply a single-unit action; the run is only replaced when it succeeds."""
        async with self.registry.lock(run_id):
            run_state = await change(self.registry.get(run_id))
            self.registry.put(run_state)
            await self.drafts.save(run_state)
            return run_state

    @staticmethod
    def _require_phase(run_state: Run, allowed: frozenset[Phase], action: str) -> None:
        if run_state.phase not in allowed:
            raise ValidationError(f"Cannot {action} while run is in phase '{run_state.phase.value}'")

    @staticmethod
    def _require_character(run_state: Run, name: str) -> Character:
        character = run_state.find_character(name)
        if character is None:
            raise NotFoundError("Character", name)
        return character

    @staticmethod
    def _require_page(run_state: Run, page_number: int) -> Page:
        page = run_state.find_page(page_number)
        if page is None:
            raise NotFoundError("Page", page_number)
        return page

    def _validate_page_count(self, page_count: int) -> None:
        pipeline = self.config.pipeline
        if not pipeline.min_pages <= page_count <= pipeline.max_pages:
            raise ValidationError(
                f"Page count must be between {pipeline.min_pages} and {pipeline.max_pages}, got {page_count}"
            )

    # run lifecycle

    async def create_run(
        self,
        story: str,
        *,
        owner_id: str | None = None,
        target_audience: str | None = None,
        page_count: int | None = None,
        generate_cover: bool | None = None,
    ) -> Run:
        if not story or not story.strip():
            raise ValidationError("Story text is required")
        if page_count is not None:
            self._validate_page_count(page_count)

        pipeline = self.config.pipeline
        run_state = Run(
            id=uuid.uuid4().hex,
            story=story.strip(),
            owner_id=owner_id,
            target_audience=target_audience or pipeline.target_audience,
            page_count=page_count,
            generate_cover=pipeline.generate_cover if generate_cover is None else generate_cover,
            message="Story received",
        )
        self.registry.put(run_state)
        await self.drafts.save(run_state)
        logger.bind(run_id=run_state.id).info("Run created words={}", len(run_state.story.split()))
        return run_state

    def get_run(self, run_id: str) -> Run:
        return self.registry.get(run_id)

    async def resume_draft(self, run_id: str) -> Run:
        existing = self.registry.find(run_id)
        if existing is not None:
            return existing
        run_state = await self.drafts.load(run_id)
        self.registry.put(run_state)
        logger.bind(run_id=run_id, phase=run_state.phase.value).info("Draft resumed")
        return run_state

    async def list_drafts(self, owner_id: str | None = None) -> list[DraftSummary]:
        return await self.drafts.list(owner_id)

    async def edit_story(self, story_id: int) -> Run:
        """Open a saved story for editing as a new run in page review."""
        async with self._session_factory() as session:
            story = await SQLAlchemyRepo(session).get_story(story_id)
        if story is None:
            raise NotFoundError("Story", story_id)
        run_state = self.registry.put(finalize_node.run_from_story(story, uuid.uuid4().hex))
        await self.drafts.save(run_state)
        logger.bind(run_id=run_state.id).info("Story #{} reopened for editing", story_id)
        return run_state

    async def finalize(self, run_id: str) -> Run:
        async def _handler(run_state: Run) -> PhaseResult:
            async with self._session_factory() as session:
                return await finalize_node.run(run_state, repo=SQLAlchemyRepo(session))

        def _prepare(run_state: Run) -> Run:
            self._require_phase(run_state, frozenset({Phase.AWAITING_PAGE_REVIEW}), "finalize")
            return run_state

        return await self._run_phase(run_id, Phase.AWAITING_PAGE_REVIEW, _handler, prepare=_prepare, start=False)

    # style and characters

    async def select_art_style(
        self,
        run_id: str,
        style_key: str | None = None,
        custom_prompt: str | None = None,
    ) -> Run:
        async def _handler(run_state: Run) -> PhaseResult:
            return await art_style.run(run_state, ctx=self.ctx, style_key=style_key, custom_prompt=custom_prompt)

        return await self._run_phase(
            run_id, Phase.ART_STYLE_SELECTION, _handler, progress=10, message="Selecting art style"
        )

    async def extract_characters(self, run_id: str, *, await_avatars: bool = True) -> Run:
        async def _handler(run_state: Run) -> PhaseResult:
            return await character_extract.run(run_state, ctx=self.ctx, await_avatars=await_avatars)

        return await self._run_phase(
            run_id, Phase.CHARACTER_EXTRACTION, _handler, progress=25, message="Extracting characters"
        )

    async def generate_avatar(
        self,
        run_id: str,
        name: str,
        *,
        custom_description: str | None = None,
        reference_image: str | None = None,
    ) -> Run:
        """Generate or regenerate one avatar without moving the run's phase."""

        async def _change(run_state: Run) -> Run:
            self._require_phase(run_state, _CHARACTER_EDIT_PHASES, "generate an avatar")
            character = self._require_character(run_state, name)
            updated = await avatar_generate.generate_avatar(
                character,
                ctx=self.ctx,
                style_prompt=self.ctx.style_prompt(run_state),
                custom_description=custom_description,
                reference_location=reference_image,
                run_id=run_id,
            )
            return run_state.model_copy(
                update={"characters": models.replace_character(run_state.characters, updated)}
            )

        return await self._mutate(run_id, _change)

    async def generate_all_avatars(self, run_id: str) -> Run:
        async def _handler(run_state: Run) -> PhaseResult:
            return await avatar_generate.run(run_state, ctx=self.ctx)

        return await self._run_phase(
            run_id, Phase.AVATAR_GENERATION, _handler, progress=40, message="Generating avatars"
        )

    async def refine_character(
        self,
        run_id: str,
        name: str,
        *,
        instructions: str | None = None,
        visual_identity: models.VisualIdentity | None = None,
        consistency_tag: str | None = None,
        description: str | None = None,
    ) -> Run:
        async def _change(run_state: Run) -> Run:
            self._require_phase(run_state, _CHARACTER_EDIT_PHASES, "refine a character")
            character = self._require_character(run_state, name)
            if instructions:
                updated = await character_extract.refine_with_instructions(
                    character, instructions, llm=self.ctx.character_llm, run_id=run_id
                )
            else:
                updated = models.refine_character(
                    character,
                    visual_identity=visual_identity,
                    consistency_tag=consistency_tag,
                    description=description,
                )
            return run_state.model_copy(
                update={"characters": models.replace_character(run_state.characters, updated)}
            )

        return await self._mutate(run_id, _change)

    # pages

    async def _page_phase(self, run_id: str, page_count: int | None, prepare: Callable[[Run], Run]) -> Run:
        async def _handler(run_state: Run) -> PhaseResult:
            return await page_generate.run(run_state, ctx=self.ctx, page_count=page_count)

        return await self._run_phase(
            run_id, Phase.PAGE_GENERATION, _handler, progress=50, message="Creating pages", prepare=prepare
        )

    async def generate_pages(self, run_id: str, page_count: int | None = None) -> Run:
        if page_count is not None:
            self._validate_page_count(page_count)

        def _prepare(run_state: Run) -> Run:
            page_generate.ensure_ready(run_state)
            if page_count is not None:
                check = check_page_count(
                    run_state.story,
                    page_count,
                    min_pages=self.config.pipeline.min_pages,
                    max_pages=self.config.pipeline.max_pages,
                )
                for warning in check.warnings:
                    logger.bind(run_id=run_id).warning("{}", warning)
            return run_state

        return await self._page_phase(run_id, page_count, _prepare)

    async def regenerate_pages(self, run_id: str, page_count: int) -> Run:
        """Discard every page and build a new breakdown with ``page_count`` pages."""
        self._validate_page_count(page_count)

        def _prepare(run_state: Run) -> Run:
            page_generate.ensure_ready(run_state)
            return restart_page_generation(run_state, page_count=page_count)

        return await self._page_phase(run_id, page_count, _prepare)

    async def update_page(
        self,
        run_id: str,
        page_number: int,
        *,
        text: str | None = None,
        image_description: str | None = None,
    ) -> Run:
        if text is None and image_description is None:
            raise ValidationError("Nothing to update")

        async def _change(run_state: Run) -> Run:
            self._require_phase(run_state, _PAGE_EDIT_PHASES, "edit pages")
            page = self._require_page(run_state, page_number)
            edited = models.edit_page(page, text=text, image_description=image_description)
            return run_state.model_copy(update={"pages": models.replace_page(run_state.pages, edited)})

        return await self._mutate(run_id, _change)

    async def add_page(self, run_id: str, *, text: str, image_description: str = "") -> Run:
        if not text.strip():
            raise ValidationError("Page text is required")

        async def _change(run_state: Run) -> Run:
            self._require_phase(run_state, _PAGE_EDIT_PHASES, "add pages")
            if len(run_state.pages) >= self.config.pipeline.max_pages:
                raise ValidationError(f"A story has at most {self.config.pipeline.max_pages} pages")
            pages = models.add_page(run_state.pages, text=text.strip(), image_description=image_description)
            return run_state.model_copy(update={"pages": pages, "page_count": len(pages)})

        return await self._mutate(run_id, _change)

    async def delete_page(self, run_id: str, page_number: int) -> Run:
        async def _change(run_state: Run) -> Run:
            self._require_phase(run_state, _PAGE_EDIT_PHASES, "delete pages")
            self._require_page(run_state, page_number)
            if len(run_state.pages) <= 1:
                raise ValidationError("Cannot delete the last page")
            pages = models.delete_page(run_state.pages, page_number)
            return run_state.model_copy(update={"pages": pages, "page_count": len(pages)})

        return await self._mutate(run_id, _change)

    async def approve_page(self, run_id: str, page_number: int, approved: bool = True) -> Run:
        async def _change(run_state: Run) -> Run:
            page = self._require_page(run_state, page_number)
            if approved and not page.is_illustrated:
                raise ValidationError(f"Page {page_number} has no illustration to approve")
            updated = page.model_copy(update={"approved": approved})
            return run_state.model_copy(update={"pages": models.replace_page(run_state.pages, updated)})

        return await self._mutate(run_id, _change)

    async def approve_cover(self, run_id: str, approved: bool = True) -> Run:
        async def _change(run_state: Run) -> Run:
            if run_state.cover is None or (approved and not run_state.cover.is_illustrated):
                raise ValidationError("No cover illustration to approve")
            return run_state.model_copy(update={"cover": run_state.cover.model_copy(update={"approved": approved})})

        return await self._mutate(run_id, _change)

    # illustrations

    async def illustrate_page(self, run_id: str, page_number: int, *, custom_description: str | None = None) -> Run:
        """Generate or regenerate one page illustration; the run's phase is unchanged."""

        async def _change(run_state: Run) -> Run:
            self._require_phase(run_state, _PAGE_EDIT_PHASES, "illustrate pages")
            page = self._require_page(run_state, page_number)
            updated = await illustrate.illustrate_page(
                run_state,
                page,
                self.ctx,
                regenerated=page.is_illustrated or bool(custom_description),
                custom_description=custom_description,
            )
            return run_state.model_copy(update={"pages": models.replace_page(run_state.pages, updated)})

        return await self._mutate(run_id, _change)

    async def generate_cover(self, run_id: str, *, custom_description: str | None = None) -> Run:
        async def _change(run_state: Run) -> Run:
            self._require_phase(run_state, _PAGE_EDIT_PHASES, "generate the cover")
            regenerated = run_state.cover is not None and run_state.cover.is_illustrated
            cover = await illustrate.generate_cover(
                run_state, self.ctx, regenerated=regenerated, custom_description=custom_description
            )
            return run_state.model_copy(update={"cover": cover})

        return await self._mutate(run_id, _change)

    async def generate_illustrations(self, run_id: str) -> Run:
        """Illustrate every remaining page in the foreground, then the cover."""
        run_state = self.registry.get(run_id)
        if run_state.phase != Phase.COVER_GENERATION:

            async def _keep_page(partial: Run) -> None:
                self.registry.put(partial)
                await self.drafts.save(partial)

            async def _pages(current: Run) -> PhaseResult:
                return await illustrate.run(current, ctx=self.ctx, on_page=_keep_page)

            run_state = await self._run_phase(
                run_id, Phase.ILLUSTRATION_GENERATION, _pages, progress=70, message="Generating illustrations"
            )
        if run_state.phase == Phase.COVER_GENERATION:

            async def _cover(current: Run) -> PhaseResult:
                return await illustrate.run_cover(current, ctx=self.ctx)

            run_state = await self._run_phase(
                run_id, Phase.COVER_GENERATION, _cover, progress=92, message="Generating cover"
            )
        return run_state

    # batches

    async def create_batch(self, run_id: str) -> BatchHandle:
        row = await self.batches.create(run_id)
        return self.batches.start(row)

    async def cancel_batch(self, batch_id: int) -> BatchRequestRow:
        return await self.batches.cancel(batch_id)

    async def get_batch(self, batch_id: int) -> BatchRequestRow:
        return await self.batches.get(batch_id)

    async def list_batches(self, *, owner_id: str | None = None, run_id: str | None = None) -> list[BatchRequestRow]:
        return await self.batches.list(owner_id=owner_id, run_id=run_id)

    # auto path

    async def run_to_completion(
        self,
        run_id: str,
        *,
        style_key: str | None = None,
        custom_prompt: str | None = None,
    ) -> Run:
        graph = build_storybook_graph(self)
        await graph.ainvoke({"run_id": run_id, "style_key": style_key, "custom_prompt": custom_prompt})
        return self.registry.get(run_id)

    def start(
        self,
        run_id: str,
        *,
        style_key: str | None = None,
        custom_prompt: str | None = None,
    ) -> TaskHandle[Run]:
        self.registry.get(run_id)

        async def _work(_: TaskHandle[Run]) -> Run:
            return await self.run_to_completion(run_id, style_key=style_key, custom_prompt=custom_prompt)

        return TaskHandle(f"run-{run_id}", _work)

    def status(self, run_id: str) -> tuple[Phase, RunStatus, int]:
        run_state = self.registry.get(run_id)
        return run_state.phase, run_state.status, run_state.progress
