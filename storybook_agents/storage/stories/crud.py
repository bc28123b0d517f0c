from __future__ import annotations

from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storybook_agents.storage.stories.base import Story, StoryCharacter, StoryPage
from storybook_agents.storage.types import StoryCharacterRow, StoryPageRow, StoryRow


def _character_row(character: StoryCharacter) -> StoryCharacterRow:
    return StoryCharacterRow(
        id=int(character.id),
        story_id=int(character.story_id),
        name=str(character.name),
        role=str(character.role),
        description=str(character.description or ""),
        avatar_prompt=str(character.avatar_prompt or ""),
        consistency_tag=character.consistency_tag,
        visual_identity_json=character.visual_identity_json,
        avatar_location=character.avatar_location,
        has_reference_image=bool(character.has_reference_image),
    )


def _page_row(page: StoryPage) -> StoryPageRow:
    return StoryPageRow(
        id=int(page.id),
        story_id=int(page.story_id),
        page_number=int(page.page_number),
        text=str(page.text),
        image_description=str(page.image_description or ""),
        characters_json=str(page.characters_json or "[]"),
        illustration_location=page.illustration_location,
        custom_description=page.custom_description,
        regenerated=bool(page.regenerated),
    )


def _story_row(story: Story, *, with_children: bool) -> StoryRow:
    return StoryRow(
        id=int(story.id),
        run_id=str(story.run_id),
        owner_id=story.owner_id,
        title=str(story.title),
        summary=story.summary,
        art_style=story.art_style,
        art_style_prompt=story.art_style_prompt,
        page_count=int(story.page_count),
        target_audience=str(story.target_audience),
        cover_location=story.cover_location,
        snapshot_json=str(story.snapshot_json),
        created_at=story.created_at,
        characters=[_character_row(c) for c in story.characters] if with_children else [],
        pages=[_page_row(p) for p in story.pages] if with_children else [],
    )


async def insert_story(
    session: AsyncSession,
    *,
    story: dict[str, Any],
    characters: list[dict[str, Any]],
    pages: list[dict[str, Any]],
) -> int:
    record = Story(**story)
    record.characters = [StoryCharacter(**character) for character in characters]
    record.pages = [StoryPage(**page) for page in pages]
    session.add(record)
    await session.flush()
    return int(record.id)


async def get_story(session: AsyncSession, story_id: int) -> StoryRow | None:
    result = await session.execute(
        select(Story)
        .where(Story.id == story_id)
        .options(selectinload(Story.characters), selectinload(Story.pages))
        .execution_options(populate_existing=True)
    )
    story = result.scalar_one_or_none()
    return _story_row(story, with_children=True) if story else None


async def list_stories(session: AsyncSession, *, owner_id: str | None = None, limit: int = 50) -> list[StoryRow]:
    stmt = select(Story)
    if owner_id is not None:
        stmt = stmt.where(Story.owner_id == owner_id)
    result = await session.execute(stmt.order_by(Story.created_at.desc(), Story.id.desc()).limit(limit))
    return [_story_row(story, with_children=False) for story in result.scalars().all()]


async def delete_story(session: AsyncSession, story_id: int) -> bool:
    result = await session.execute(delete(Story).where(Story.id == story_id))
    return bool(result.rowcount)
