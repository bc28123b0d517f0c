"""Storybook phase handlers."""

from storybook_agents.pipeline.nodes import (
    art_style,
    avatar_generate,
    character_extract,
    finalize,
    illustrate,
    page_generate,
)

__all__ = [
    "art_style",
    "character_extract",
    "avatar_generate",
    "page_generate",
    "illustrate",
    "finalize",
]
