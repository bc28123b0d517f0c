from __future__ import annotations

AVATAR_STYLE_GUIDE = (
    "SOLO CHARACTER ONLY - single character portrait, no other characters or people in the image. "
    "Clean plain solid color background. Centered composition, character facing slightly toward camera. "
    "High quality, detailed features, consistent lighting. Professional storybook character illustration."
)
CONSISTENCY_NOTE = "[Maintain exact character appearances across all illustrations]"
COMPOSITION_GUIDE = (
    "DYNAMIC ILLUSTRATION: Show characters IN ACTION - moving, expressing emotion, interacting. "
    "Characters in foreground, expressive poses and clear emotions. Background soft and supportive."
)
QUALITY_GUIDE = "High quality storybook illustration. Capture the story moment with energy and emotion."


def with_style(style_prompt: str | None, base: str) -> str:
    if not style_prompt:
        return base
    return f"{style_prompt}. {base}"


def truncate_scene(description: str, max_chars: int) -> str:
    if len(description) <= max_chars:
        return description
    return description[:max_chars] + "..."


def build_avatar_prompt(
    avatar_prompt: str,
    *,
    style_prompt: str | None = None,
    consistency_tag: str | None = None,
    custom_description: str | None = None,
) -> str:
    character = custom_description or avatar_prompt
    prompt = f"{AVATAR_STYLE_GUIDE} Character: {character}"
    if consistency_tag:
        prompt += f" Key features: {consistency_tag}."
    return with_style(style_prompt, prompt)


def build_illustration_prompt(
    description: str,
    *,
    art_style: str,
    consistency_block: str = "",
    action: str = "",
    emotion: str = "",
    max_scene_chars: int = 550,
) -> str:
    """Assemble a page prompt.

    Only the scene description is truncated; the consistency block is always
    kept whole and placed last.
    """
    parts = [f"Art style: {art_style}."]
    if consistency_block:
        parts.append(CONSISTENCY_NOTE)
    parts.append(COMPOSITION_GUIDE)
    if action and emotion:
        parts.append(f"ACTION: {action}. EMOTION: {emotion}.")
    parts.append(f"Scene: {truncate_scene(description, max_scene_chars)}")
    parts.append(QUALITY_GUIDE)
    if consistency_block:
        parts.append(consistency_block)
    return " ".join(parts)


def build_cover_prompt(
    *,
    title: str,
    summary: str,
    art_style: str,
    character_visuals: str,
    main_characters: str,
    custom_description: str | None = None,
    max_scene_chars: int = 550,
) -> str:
    scene = truncate_scene(custom_description or summary, max_scene_chars)
    lines = ["CRITICAL: Maintain exact character appearances. Leave space at the top for the title."]
    if character_visuals:
        lines.append(f"[CHARACTER REFERENCE: {character_visuals}]")
    if main_characters:
        lines.append(
            f"FOCUS: Main characters ({main_characters}) prominently displayed in the foreground, "
            "taking center stage."
        )
    lines.extend(
        [
            "Background: Soft, atmospheric, hints at the story setting but not overpowering.",
            f"Book title: {title}.",
            f"Scene context: {scene}",
            f"Art style: {art_style}.",
        ]
    )
    return "\n".join(lines)
