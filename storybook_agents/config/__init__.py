"""Configuration loading and schema."""

from storybook_agents.config.loader import load_config
from storybook_agents.config.schema import AppConfig, AppConfigRoot

__all__ = ["AppConfig", "AppConfigRoot", "load_config"]
