from __future__ import annotations

STYLE_PROMPT_VERSION = "v1"


def style_prompt(story: str, catalogue: str) -> tuple[str, str]:
    system = (
        "You are an art director specializing in visual storytelling.\n"
        "Recommend the most suitable art style for the story from the available options, "
        "considering genre, audience, tone, setting and pacing.\n\n"
        f"Available art styles:\n{catalogue}\n\n"
        "Return only a JSON object:\n"
        '{"recommendedStyle": "style_key", "confidence": 0.0, "reasoning": "why", '
        '"alternativeStyles": ["second_key", "third_key"]}'
    )
    user = f"Analyze this story and recommend the best art style:\n\n{story}"
    return system, user
