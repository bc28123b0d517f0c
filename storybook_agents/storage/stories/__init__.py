"""Completed story records and CRUD helpers."""

from storybook_agents.storage.stories.base import Story, StoryCharacter, StoryPage
from storybook_agents.storage.stories import crud

__all__ = ["Story", "StoryCharacter", "StoryPage", "crud"]
