"""Batch request models and CRUD helpers."""

from storybook_agents.storage.batches.base import BatchRequest
from storybook_agents.storage.batches import crud

__all__ = ["BatchRequest", "crud"]
