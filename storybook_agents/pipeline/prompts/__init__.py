"""Prompt templates for the storybook pipeline."""

from storybook_agents.pipeline.prompts.characters import CHARACTER_PROMPT_VERSION
from storybook_agents.pipeline.prompts.pages import PAGE_PROMPT_VERSION
from storybook_agents.pipeline.prompts.style import STYLE_PROMPT_VERSION

__all__ = ["CHARACTER_PROMPT_VERSION", "PAGE_PROMPT_VERSION", "STYLE_PROMPT_VERSION"]
