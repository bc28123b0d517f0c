from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def import_all_models() -> None:
    from storybook_agents.storage.batches.base import BatchRequest
    from storybook_agents.storage.drafts.base import Draft
    from storybook_agents.storage.stories.base import Story, StoryCharacter, StoryPage

    _ = (BatchRequest, Draft, Story, StoryCharacter, StoryPage)
