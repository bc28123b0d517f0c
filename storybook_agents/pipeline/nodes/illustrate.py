"""Page and cover illustration.

``ensure_illustrated`` is the one idempotent entry point used by both the
interactive phase and the batch executor: an already illustrated page is
returned untouched without an upstream call.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from loguru import logger

from storybook_agents.domain.errors import ValidationError
from storybook_agents.domain.models import (
    Character,
    Cover,
    Page,
    Run,
    apply_cover_result,
    apply_illustration_result,
    replace_page,
    with_custom_description,
)
from storybook_agents.domain.phases import Phase, RunStatus
from storybook_agents.pipeline.consistency import (
    build_consistency_block,
    cover_character_visuals,
    main_character_names,
    select_scene_characters,
)
from storybook_agents.pipeline.context import PipelineContext
from storybook_agents.pipeline.prompts.images import build_cover_prompt, build_illustration_prompt
from storybook_agents.pipeline.run import PhaseResult


def reference_locations(characters: list[Character]) -> list[str]:
    return [character.avatar.location for character in characters if character.avatar is not None]


async def illustrate_page(
    run_state: Run,
    page: Page,
    ctx: PipelineContext,
    *,
    regenerated: bool = False,
    custom_description: str | None = None,
) -> Page:
    """Generate (or regenerate) one page illustration unconditionally."""
    if custom_description:
        page = with_custom_description(page, custom_description)

    pipeline = ctx.config.pipeline
    scene_characters = select_scene_characters(run_state.characters, page.characters_in_scene)
    block = build_consistency_block(
        run_state.characters,
        page.characters_in_scene,
        excerpt_chars=pipeline.raw_descriptor_chars,
    )
    prompt = build_illustration_prompt(
        page.effective_description,
        art_style=ctx.style_prompt(run_state),
        consistency_block=block,
        action=page.action,
        emotion=page.emotion,
        max_scene_chars=pipeline.scene_description_max_chars,
    )
    result = await ctx.images.generate(
        prompt,
        reference_locations(scene_characters),
        kind="page",
        name=f"{run_state.id}_page{page.page_number}",
    )
    logger.bind(run_id=run_state.id, page=page.page_number).info(
        "Illustrated page used_references={}", result.used_references
    )
    return apply_illustration_result(page, result.asset, regenerated=regenerated)


async def ensure_illustrated(run_state: Run, page: Page, ctx: PipelineContext) -> tuple[Page, bool]:
    """Return ``(page, generated)``; ``generated`` is False when nothing was called."""
    if page.is_illustrated:
        return page, False
    return await illustrate_page(run_state, page, ctx), True


async def generate_cover(
    run_state: Run,
    ctx: PipelineContext,
    *,
    regenerated: bool = False,
    custom_description: str | None = None,
) -> Cover:
    cover = run_state.cover or Cover(title=run_state.title or "Untitled Story", summary=run_state.summary or "")
    if custom_description:
        cover = cover.model_copy(update={"custom_description": custom_description})

    main = [character for character in run_state.characters if character.role == "main"]
    prompt = build_cover_prompt(
        title=cover.title,
        summary=cover.summary,
        art_style=ctx.style_prompt(run_state),
        character_visuals=cover_character_visuals(main),
        main_characters=main_character_names(run_state.characters),
        custom_description=cover.custom_description,
        max_scene_chars=ctx.config.pipeline.scene_description_max_chars,
    )
    result = await ctx.images.generate(prompt, reference_locations(main), kind="cover", name=run_state.id)
    logger.bind(run_id=run_state.id, phase=Phase.COVER_GENERATION.value).info(
        "Cover ready used_references={}", result.used_references
    )
    return apply_cover_result(cover, result.asset, regenerated=regenerated)


async def ensure_cover(run_state: Run, ctx: PipelineContext) -> tuple[Cover | None, bool]:
    if not run_state.cover_needed:
        return run_state.cover, False
    return await generate_cover(run_state, ctx), True


async def run(
    run_state: Run,
    *,
    ctx: PipelineContext,
    on_page: Callable[[Run], Awaitable[None]] | None = None,
) -> PhaseResult:
    """Illustrate every page still missing one; any failure fails the phase.

    ``on_page`` receives the run after each generated page, so illustrations
    made before a failure are kept by the caller.
    """
    if not run_state.pages:
        raise ValidationError("No pages to illustrate. Generate pages first.")

    pages = list(run_state.pages)
    for page in sorted(run_state.pages, key=lambda item: item.page_number):
        updated, generated = await ensure_illustrated(run_state, page, ctx)
        if generated:
            pages = replace_page(pages, updated)
            if on_page is not None:
                await on_page(run_state.model_copy(update={"pages": pages}))

    if run_state.generate_cover:
        return PhaseResult(
            phase=Phase.COVER_GENERATION,
            status=RunStatus.RUNNING,
            progress=90,
            message="Illustrations ready",
            updates={"pages": pages},
        )
    return PhaseResult.waiting(Phase.AWAITING_PAGE_REVIEW, progress=95, message="Illustrations ready", pages=pages)


async def run_cover(run_state: Run, *, ctx: PipelineContext) -> PhaseResult:
    cover, _ = await ensure_cover(run_state, ctx)
    return PhaseResult.waiting(Phase.AWAITING_PAGE_REVIEW, progress=95, message="Cover ready", cover=cover)
