from __future__ import annotations

from typing import Any

import orjson
from loguru import logger

from storybook_agents.domain.errors import ValidationError
from storybook_agents.domain.models import Run
from storybook_agents.domain.phases import Phase, RunStatus
from storybook_agents.llm.json_utils import dumps_sorted
from storybook_agents.pipeline.run import PhaseResult, reopen_for_edit
from storybook_agents.storage.repo import SQLAlchemyRepo
from storybook_agents.storage.types import StoryRow


def story_record(run_state: Run) -> dict[str, Any]:
    decision = run_state.art_style_decision
    return {
        "run_id": run_state.id,
        "owner_id": run_state.owner_id,
        "title": run_state.title or "Untitled Story",
        "summary": run_state.summary,
        "art_style": decision.selected_style if decision else None,
        "art_style_prompt": decision.style_prompt if decision else None,
        "page_count": len(run_state.pages),
        "target_audience": run_state.target_audience,
        "cover_location": run_state.cover.illustration.location
        if run_state.cover and run_state.cover.illustration
        else None,
        "snapshot_json": dumps_sorted(run_state.model_dump(mode="json")),
    }


def character_records(run_state: Run) -> list[dict[str, Any]]:
    return [
        {
            "name": character.name,
            "role": character.role,
            "description": character.description,
            "avatar_prompt": character.avatar_prompt,
            "consistency_tag": character.consistency_tag,
            "visual_identity_json": dumps_sorted(character.visual_identity.model_dump(mode="json"))
            if character.visual_identity
            else None,
            "avatar_location": character.avatar.location if character.avatar else None,
            "has_reference_image": character.has_reference_image,
        }
        for character in run_state.characters
    ]


def page_records(run_state: Run) -> list[dict[str, Any]]:
    return [
        {
            "page_number": page.page_number,
            "text": page.text,
            "image_description": page.image_description,
            "characters_json": dumps_sorted(page.characters_in_scene),
            "illustration_location": page.illustration.location if page.illustration else None,
            "custom_description": page.custom_description,
            "regenerated": page.regenerated,
        }
        for page in run_state.pages
    ]


async def persist_story(run_state: Run, *, repo: SQLAlchemyRepo) -> int:
    """Write the immutable story record, replacing the one an edit session was opened from."""
    if not run_state.pages:
        raise ValidationError("Cannot finalize a story without pages")

    missing = [page.page_number for page in run_state.pages if not page.is_illustrated]
    if missing:
        logger.bind(run_id=run_state.id).warning("Finalizing with pages lacking illustrations: {}", missing)

    if run_state.original_story_id is not None:
        await repo.delete_story(run_state.original_story_id)
    story_id = await repo.insert_story(
        story=story_record(run_state),
        characters=character_records(run_state),
        pages=page_records(run_state),
    )
    await repo.delete_draft(run_state.id)
    logger.bind(run_id=run_state.id, phase=Phase.COMPLETE.value).info(
        "Story saved id={} pages={}", story_id, len(run_state.pages)
    )
    return story_id


async def run(run_state: Run, *, repo: SQLAlchemyRepo) -> PhaseResult:
    story_id = await persist_story(run_state, repo=repo)
    return PhaseResult(
        phase=Phase.COMPLETE,
        status=RunStatus.COMPLETE,
        progress=100,
        message=f"Story saved as #{story_id}",
    )


def run_from_story(story: StoryRow, run_id: str) -> Run:
    """Rebuild an editable run from a saved story snapshot."""
    snapshot = orjson.loads(story.snapshot_json)
    snapshot.update(
        {
            "id": run_id,
            "phase": Phase.COMPLETE.value,
            "status": RunStatus.COMPLETE.value,
            "progress": 100,
            "error": None,
            "original_story_id": story.id,
        }
    )
    return reopen_for_edit(Run.model_validate(snapshot))
