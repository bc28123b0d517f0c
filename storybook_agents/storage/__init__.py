"""Storage layer for SQLite via SQLAlchemy async."""

from storybook_agents.storage import batches, drafts, stories

__all__ = ["batches", "drafts", "stories"]
