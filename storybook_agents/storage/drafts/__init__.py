"""Draft snapshot models and CRUD helpers."""

from storybook_agents.storage.drafts.base import Draft
from storybook_agents.storage.drafts import crud

__all__ = ["Draft", "crud"]
