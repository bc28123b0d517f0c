from __future__ import annotations

from typing import Any

from loguru import logger

from storybook_agents.domain.errors import UpstreamServiceError
from storybook_agents.domain.models import Character, Outfit, Run, VisualIdentity, refine_character
from storybook_agents.domain.phases import Phase, RunStatus
from storybook_agents.llm.json_utils import get_str, get_str_list
from storybook_agents.pipeline.consistency import derive_consistency_tag
from storybook_agents.pipeline.context import PipelineContext, TextService
from storybook_agents.pipeline.prompts.characters import character_prompt, refine_prompt
from storybook_agents.pipeline.run import PhaseResult

_ROLES = {"main", "supporting", "minor"}


def _parse_outfit(raw: Any) -> Outfit | None:
    if isinstance(raw, str) and raw.strip():
        return Outfit(top=raw.strip())
    if not isinstance(raw, dict):
        return None
    outfit = Outfit(
        top=get_str(raw, "top") or None,
        bottom=get_str(raw, "bottom") or None,
        footwear=get_str(raw, "footwear", "shoes") or None,
        accessories=get_str_list(raw, "accessories", max_items=6),
    )
    if not (outfit.top or outfit.bottom or outfit.footwear or outfit.accessories):
        return None
    return outfit


def parse_visual_identity(raw: Any) -> VisualIdentity | None:
    if not isinstance(raw, dict):
        return None
    identity = VisualIdentity(
        species=get_str(raw, "species") or None,
        age_appearance=get_str(raw, "ageAppearance", "age_appearance", "age") or None,
        gender=get_str(raw, "gender") or None,
        body_type=get_str(raw, "bodyType", "body_type") or None,
        skin_tone=get_str(raw, "skinTone", "skin_tone") or None,
        hair_color=get_str(raw, "hairColor", "hair_color") or None,
        hair_style=get_str(raw, "hairStyle", "hair_style") or None,
        eye_color=get_str(raw, "eyeColor", "eye_color") or None,
        distinctive_features=get_str_list(raw, "distinctiveFeatures", "distinctive_features", max_items=6),
        primary_outfit=_parse_outfit(raw.get("primaryOutfit", raw.get("primary_outfit"))),
    )
    if identity == VisualIdentity():
        return None
    return identity


def _clip_words(text: str, max_words: int) -> str:
    return " ".join(text.split()[:max_words])


def parse_characters(payload: dict[str, Any], *, max_tag_words: int = 20) -> list[Character]:
    raw_items = payload.get("characters", [])
    if not isinstance(raw_items, list):
        raise UpstreamServiceError("Character extraction returned no character list")

    characters: list[Character] = []
    seen: set[str] = set()
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        name = get_str(raw, "name")
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())

        role = get_str(raw, "role", default="supporting").lower()
        identity = parse_visual_identity(raw.get("visualIdentity", raw.get("visual_identity")))
        tag = get_str(raw, "consistencyTag", "consistency_tag")
        if tag:
            tag = _clip_words(tag, max_tag_words)
        elif identity is not None:
            tag = derive_consistency_tag(identity, max_words=max_tag_words) or ""

        characters.append(
            Character(
                name=name,
                role=role if role in _ROLES else "supporting",
                description=get_str(raw, "description"),
                avatar_prompt=get_str(raw, "avatarPrompt", "avatar_prompt"),
                visual_identity=identity,
                consistency_tag=tag or None,
            )
        )
    return characters


async def extract_characters(story: str, *, llm: TextService, run_id: str, max_tag_words: int = 20) -> list[Character]:
    system, user = character_prompt(story)
    payload = await llm.generate_structured(system, user, context={"run_id": run_id, "phase": "characters"})
    characters = parse_characters(payload, max_tag_words=max_tag_words)
    logger.bind(run_id=run_id, phase=Phase.CHARACTER_EXTRACTION.value).info(
        "Extracted {} characters ({} main)",
        len(characters),
        sum(1 for character in characters if character.role == "main"),
    )
    return characters


async def refine_with_instructions(character: Character, instructions: str, *, llm: TextService, run_id: str) -> Character:
    """Ask the text service to rework a character description, then apply it as an explicit edit."""
    system, user = refine_prompt(character.model_dump(mode="json", exclude={"avatar"}), instructions)
    payload = await llm.generate_structured(system, user, context={"run_id": run_id, "phase": "refine"})
    identity = parse_visual_identity(payload.get("visualIdentity", payload.get("visual_identity")))
    reworked = character.model_copy(
        update={"avatar_prompt": get_str(payload, "avatarPrompt", "avatar_prompt", default=character.avatar_prompt)}
    )
    return refine_character(
        reworked,
        visual_identity=identity,
        consistency_tag=get_str(payload, "consistencyTag", "consistency_tag") or None,
        description=get_str(payload, "description", default=character.description),
    )


async def run(run_state: Run, *, ctx: PipelineContext, await_avatars: bool = True) -> PhaseResult:
    characters = await extract_characters(
        run_state.story,
        llm=ctx.character_llm,
        run_id=run_state.id,
        max_tag_words=ctx.config.pipeline.consistency_tag_max_words,
    )
    message = f"Found {len(characters)} characters"
    if await_avatars:
        return PhaseResult.waiting(Phase.AWAITING_AVATAR_INPUT, progress=35, message=message, characters=characters)
    # Auto path goes straight on to avatar generation.
    return PhaseResult(
        phase=Phase.AVATAR_GENERATION,
        status=RunStatus.RUNNING,
        progress=35,
        message=message,
        updates={"characters": characters},
    )
