from __future__ import annotations

from typing import Any

from loguru import logger

from storybook_agents.domain.errors import UpstreamServiceError, ValidationError
from storybook_agents.domain.models import Character, Cover, Page, Run
from storybook_agents.domain.phases import Phase
from storybook_agents.llm.json_utils import get_str, get_str_list
from storybook_agents.pipeline.consistency import short_reference
from storybook_agents.pipeline.context import PipelineContext
from storybook_agents.pipeline.page_count import estimate_page_count
from storybook_agents.pipeline.prompts.pages import page_prompt
from storybook_agents.pipeline.run import PhaseResult


def character_reference_list(characters: list[Character]) -> str:
    lines = []
    for character in characters:
        visual_id = character.consistency_tag or character.avatar_prompt[:100] or character.description
        lines.append(f"- {character.name} ({character.role}): {character.description}\n  VISUAL ID: {visual_id}")
    return "\n".join(lines)


def enhance_description(raw: dict[str, Any], characters: list[Character]) -> tuple[str, str, list[str]]:
    """Prefix a scene with short visual references of the characters in it.

    Returns the enhanced description, the model's original one and the scene's
    character names.
    """
    by_name = {character.name.lower(): character for character in characters}
    original = get_str(raw, "imageDescription", "image_description")
    names = get_str_list(raw, "characters", "charactersInScene", "characters_in_scene")
    action = get_str(raw, "action")
    emotion = get_str(raw, "emotion", "mood")
    scene = get_str(raw, "scene", "setting")

    refs = "; ".join(
        f"{name} ({short_reference(by_name[name.lower()])})" if name.lower() in by_name else name for name in names
    )
    if action and refs:
        description = f"{refs} - ACTION: {action}, EMOTION: {emotion}. {original}"
    elif refs:
        description = f"{refs}. {original}"
    else:
        description = original

    if scene and scene not in description:
        description = f"{description} Setting: {scene}."
    return description.strip(), original, names


def parse_pages(payload: dict[str, Any], characters: list[Character]) -> list[Page]:
    raw_pages = payload.get("pages")
    if not isinstance(raw_pages, list):
        raise UpstreamServiceError("Page breakdown returned no page list")

    pages: list[Page] = []
    for raw in raw_pages:
        if not isinstance(raw, dict):
            continue
        text = get_str(raw, "text")
        if not text:
            continue
        description, original, names = enhance_description(raw, characters)
        pages.append(
            Page(
                # Numbered by position; the model's own numbering is not trusted.
                page_number=len(pages) + 1,
                text=text,
                image_description=description,
                original_description=original,
                action=get_str(raw, "action"),
                emotion=get_str(raw, "emotion", "mood"),
                scene=get_str(raw, "scene", "setting"),
                characters_in_scene=names,
            )
        )
    if not pages:
        raise UpstreamServiceError("Page breakdown contained no usable pages")
    return pages


def ensure_ready(run_state: Run) -> None:
    if not run_state.characters:
        raise ValidationError("No characters found. Extract characters first.")


async def run(run_state: Run, *, ctx: PipelineContext, page_count: int | None = None) -> PhaseResult:
    pipeline = ctx.config.pipeline
    count = page_count or run_state.page_count or estimate_page_count(
        run_state.story, min_pages=pipeline.min_pages, max_pages=pipeline.max_pages
    )
    system, user = page_prompt(
        run_state.story,
        page_count=count,
        target_audience=run_state.target_audience,
        character_list=character_reference_list(run_state.characters),
    )
    payload = await ctx.page_llm.generate_structured(
        system, user, context={"run_id": run_state.id, "phase": "pages"}
    )
    pages = parse_pages(payload, run_state.characters)
    title = get_str(payload, "title", default="Untitled Story")
    summary = get_str(payload, "summary")

    logger.bind(run_id=run_state.id, phase=Phase.PAGE_GENERATION.value).info(
        "Generated {} pages (requested {})", len(pages), count
    )
    if len(pages) != count:
        logger.bind(run_id=run_state.id).warning("Page count mismatch requested={} got={}", count, len(pages))

    cover = Cover(title=title, summary=summary) if run_state.generate_cover else None
    return PhaseResult.waiting(
        Phase.AWAITING_PROMPT_REVIEW,
        progress=60,
        message=f"Created {len(pages)} pages",
        title=title,
        summary=summary,
        pages=pages,
        page_count=count,
        cover=cover,
    )
