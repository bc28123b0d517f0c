from __future__ import annotations

from loguru import logger

from storybook_agents.domain.models import ArtStyleDecision, Run
from storybook_agents.domain.phases import Phase
from storybook_agents.llm.json_utils import get_float, get_str, get_str_list
from storybook_agents.pipeline.context import PipelineContext, TextService
from storybook_agents.pipeline.prompts.style import style_prompt
from storybook_agents.pipeline.run import PhaseResult
from storybook_agents.pipeline.styles import (
    ART_STYLES,
    CUSTOM_STYLE_KEY,
    get_style,
    is_valid_style,
    style_catalogue_text,
)


async def decide_style(
    story: str,
    *,
    llm: TextService,
    style_key: str | None = None,
    custom_prompt: str | None = None,
    default_style: str = "illustration",
    run_id: str | None = None,
) -> ArtStyleDecision:
    if custom_prompt and custom_prompt.strip():
        return ArtStyleDecision(
            selected_style=CUSTOM_STYLE_KEY,
            style_prompt=custom_prompt.strip(),
            source="user_custom_prompt",
            reasoning="User provided a custom style prompt",
        )

    if style_key and is_valid_style(style_key):
        style = get_style(style_key)
        return ArtStyleDecision(
            selected_style=style.key,
            style_prompt=style.prompt,
            source="user_preference",
            reasoning=f"User selected {style.name} style",
        )
    if style_key:
        logger.bind(run_id=run_id or "-").warning("Unknown style '{}', asking for a recommendation", style_key)

    system, user = style_prompt(story, style_catalogue_text())
    try:
        payload = await llm.generate_structured(system, user, context={"run_id": run_id, "phase": "art_style"})
    except Exception as exc:  # noqa: BLE001
        logger.bind(run_id=run_id or "-").warning("Style recommendation fallback due to LLM error: {}", exc)
        fallback = get_style(default_style)
        return ArtStyleDecision(
            selected_style=fallback.key,
            style_prompt=fallback.prompt,
            source="default",
            reasoning="Recommendation unavailable",
        )

    recommended = get_str(payload, "recommendedStyle", "recommended_style").lower()
    style = ART_STYLES.get(recommended) or get_style(default_style)
    alternatives = [key.lower() for key in get_str_list(payload, "alternativeStyles", "alternative_styles")]
    return ArtStyleDecision(
        selected_style=style.key,
        style_prompt=style.prompt,
        source="ai_recommendation",
        reasoning=get_str(payload, "reasoning"),
        confidence=get_float(payload, "confidence"),
        alternatives=[key for key in alternatives if key in ART_STYLES and key != style.key],
    )


async def run(
    run_state: Run,
    *,
    ctx: PipelineContext,
    style_key: str | None = None,
    custom_prompt: str | None = None,
) -> PhaseResult:
    decision = await decide_style(
        run_state.story,
        llm=ctx.style_llm,
        style_key=style_key,
        custom_prompt=custom_prompt,
        default_style=ctx.config.pipeline.default_style,
        run_id=run_state.id,
    )
    return PhaseResult.waiting(
        Phase.ART_STYLE_SELECTION,
        progress=20,
        message=f"Art style: {decision.selected_style}",
        art_style_decision=decision,
    )
