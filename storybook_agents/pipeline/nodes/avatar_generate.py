from __future__ import annotations

from loguru import logger

from storybook_agents.domain.models import Character, Run, apply_avatar_result, replace_character
from storybook_agents.domain.phases import Phase
from storybook_agents.pipeline.context import PipelineContext
from storybook_agents.pipeline.prompts.images import build_avatar_prompt
from storybook_agents.pipeline.run import PhaseResult


async def generate_avatar(
    character: Character,
    *,
    ctx: PipelineContext,
    style_prompt: str,
    custom_description: str | None = None,
    reference_location: str | None = None,
    run_id: str = "-",
) -> Character:
    """Generate one avatar; a user reference image conditions the call when given."""
    description = custom_description or character.custom_description
    prompt = build_avatar_prompt(
        character.avatar_prompt or character.description,
        style_prompt=style_prompt,
        consistency_tag=character.consistency_tag,
        custom_description=description,
    )
    references = [reference_location] if reference_location else []
    result = await ctx.images.generate(prompt, references, kind="avatar", name=character.name)
    logger.bind(run_id=run_id, phase=Phase.AVATAR_GENERATION.value).info(
        "Avatar ready for {} used_references={}", character.name, result.used_references
    )
    return apply_avatar_result(
        character,
        result.asset,
        custom_description=custom_description,
        has_reference_image=reference_location is not None,
    )


async def run(run_state: Run, *, ctx: PipelineContext) -> PhaseResult:
    """Generate avatars for every character that does not have one yet."""
    style_prompt = ctx.style_prompt(run_state)
    characters = list(run_state.characters)
    for character in run_state.characters:
        if character.avatar_generated and character.avatar is not None:
            continue
        updated = await generate_avatar(character, ctx=ctx, style_prompt=style_prompt, run_id=run_state.id)
        characters = replace_character(characters, updated)

    return PhaseResult.waiting(
        Phase.AWAITING_APPROVAL,
        progress=45,
        message="Avatars ready for review",
        characters=characters,
    )
