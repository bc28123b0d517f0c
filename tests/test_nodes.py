from __future__ import annotations

import asyncio
from typing import Any, Mapping

import pytest

from storybook_agents.domain.errors import UpstreamServiceError
from storybook_agents.domain.models import Character
from storybook_agents.pipeline.nodes.art_style import decide_style
from storybook_agents.pipeline.nodes.character_extract import parse_characters
from storybook_agents.pipeline.nodes.page_generate import enhance_description, parse_pages


class _FakeStyleLLM:
    def __init__(self, payload: dict[str, Any] | None = None, error: Exception | None = None) -> None:
        self.payload = payload or {}
        self.error = error
        self.calls = 0

    async def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        parser: Any = None,
        *,
        context: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.payload


def test_parse_characters_dedupes_and_normalizes_roles() -> None:
    characters = parse_characters(
        {
            "characters": [
                {"name": "Mia", "role": "MAIN", "consistencyTag": "red curly hair, yellow raincoat"},
                {"name": "mia", "role": "supporting"},
                {"name": "Bo", "role": "sidekick", "visualIdentity": {"species": "dog", "hairColor": "brown"}},
                {"name": ""},
                "not a character",
            ]
        }
    )

    assert [character.name for character in characters] == ["Mia", "Bo"]
    assert characters[0].role == "main"
    assert characters[0].consistency_tag == "red curly hair, yellow raincoat"
    assert characters[1].role == "supporting"
    assert characters[1].consistency_tag is not None
    assert "dog" in characters[1].consistency_tag


def test_parse_characters_clips_long_tags() -> None:
    tag = " ".join(f"word{index}" for index in range(30))

    characters = parse_characters({"characters": [{"name": "Mia", "consistencyTag": tag}]}, max_tag_words=5)

    assert characters[0].consistency_tag == "word0 word1 word2 word3 word4"


def test_parse_characters_rejects_missing_list() -> None:
    with pytest.raises(UpstreamServiceError):
        parse_characters({"characters": "Mia"})


def test_enhance_description_prefixes_character_references() -> None:
    characters = [Character(name="Mia", role="main", consistency_tag="red hair, raincoat")]

    description, original, names = enhance_description(
        {
            "imageDescription": "Mia climbs the stairs",
            "characters": ["Mia", "Stranger"],
            "action": "climbing",
            "emotion": "determined",
            "scene": "lighthouse tower",
        },
        characters,
    )

    assert description == (
        "Mia (red hair, raincoat); Stranger - ACTION: climbing, EMOTION: determined. "
        "Mia climbs the stairs Setting: lighthouse tower."
    )
    assert original == "Mia climbs the stairs"
    assert names == ["Mia", "Stranger"]


def test_parse_pages_numbers_by_position_and_skips_empty_text() -> None:
    pages = parse_pages(
        {
            "pages": [
                {"pageNumber": 7, "text": "First", "imageDescription": "a"},
                {"pageNumber": 8, "text": ""},
                {"pageNumber": 9, "text": "Second", "imageDescription": "b"},
            ]
        },
        [],
    )

    assert [(page.page_number, page.text) for page in pages] == [(1, "First"), (2, "Second")]

    with pytest.raises(UpstreamServiceError):
        parse_pages({"pages": [{"text": ""}]}, [])


def test_custom_style_prompt_wins_without_llm_call() -> None:
    llm = _FakeStyleLLM()

    decision = asyncio.run(decide_style("story", llm=llm, style_key="anime", custom_prompt="  ink wash  "))

    assert decision.source == "user_custom_prompt"
    assert decision.style_prompt == "ink wash"
    assert llm.calls == 0


def test_valid_style_key_is_used_directly() -> None:
    llm = _FakeStyleLLM()

    decision = asyncio.run(decide_style("story", llm=llm, style_key="manga"))

    assert decision.selected_style == "manga"
    assert decision.source == "user_preference"
    assert llm.calls == 0


def test_recommendation_filters_unknown_alternatives() -> None:
    llm = _FakeStyleLLM(
        {"recommendedStyle": "Cartoon", "alternativeStyles": ["pixel", "cartoon", "unknown"], "confidence": "0.7"}
    )

    decision = asyncio.run(decide_style("story", llm=llm, style_key="no-such-style"))

    assert decision.selected_style == "cartoon"
    assert decision.source == "ai_recommendation"
    assert decision.alternatives == ["pixel"]
    assert llm.calls == 1


def test_recommendation_falls_back_to_default_when_llm_fails() -> None:
    llm = _FakeStyleLLM(error=UpstreamServiceError("LLM call failed after 3 attempts"))

    decision = asyncio.run(decide_style("story", llm=llm, default_style="illustration"))

    assert decision.selected_style == "illustration"
    assert decision.source == "default"
