from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol, TypeVar

from storybook_agents.config.schema import AppConfigRoot
from storybook_agents.domain.models import Run
from storybook_agents.llm.factory import StorybookTextClient
from storybook_agents.llm.images import OpenAIImageClient
from storybook_agents.llm.json_utils import safe_load_json_dict
from storybook_agents.pipeline.generation import GenerationAdapter
from storybook_agents.pipeline.styles import get_style
from storybook_agents.storage.assets import LocalAssetStore

T = TypeVar("T")


class TextService(Protocol):
    async def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        parser: Callable[[str], T] = safe_load_json_dict,
        *,
        context: Mapping[str, Any] | None = None,
    ) -> T: ...


@dataclass
class PipelineContext:
    """Upstream collaborators handed to every phase handler."""

    config: AppConfigRoot
    style_llm: TextService
    character_llm: TextService
    page_llm: TextService
    images: GenerationAdapter

    def style_prompt(self, run: Run) -> str:
        if run.art_style_decision is not None:
            return run.art_style_decision.style_prompt
        return get_style(self.config.pipeline.default_style).prompt


def build_context(config: AppConfigRoot) -> PipelineContext:
    pipeline = config.pipeline
    images = GenerationAdapter(
        OpenAIImageClient(config),
        LocalAssetStore(config.storage.assets_dir),
        references_enabled=pipeline.reference_conditioning_enabled,
        max_references=pipeline.max_reference_images,
    )
    return PipelineContext(
        config=config,
        style_llm=StorybookTextClient(config, "style"),
        character_llm=StorybookTextClient(config, "character"),
        page_llm=StorybookTextClient(config, "page"),
        images=images,
    )
