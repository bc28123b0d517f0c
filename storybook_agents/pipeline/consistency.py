"""Visual-identity descriptors that keep recurring characters looking the same.

The image service has no memory between calls, so every avatar, page and cover
request is conditioned on text rendered here from the same character record.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from storybook_agents.domain.models import Character, VisualIdentity

CONSISTENCY_HEADER = "[CHARACTER CONSISTENCY - These EXACT appearances MUST be maintained:"
DEFAULT_EXCERPT_CHARS = 80
SHORT_EXCERPT_CHARS = 60


def select_scene_characters(characters: Sequence[Character], names: Iterable[str]) -> list[Character]:
    """Characters named in a scene, falling back to the main cast."""
    wanted = {name.strip().lower() for name in names if name and name.strip()}
    selected = [character for character in characters if character.name.lower() in wanted]
    if selected:
        return selected
    return [character for character in characters if character.role == "main"]


def _hair(identity: VisualIdentity) -> str | None:
    parts = [part for part in (identity.hair_color, identity.hair_style) if part]
    if not parts:
        return None
    return f"{' '.join(parts)} hair"


def _raw_excerpt(character: Character, limit: int) -> str:
    source = character.avatar_prompt or character.description or ""
    return source[:limit].strip()


def render_detailed_line(character: Character, *, excerpt_chars: int = DEFAULT_EXCERPT_CHARS) -> str:
    identity = character.visual_identity
    if identity is not None:
        parts = [f"{character.name}:"]
        hair = _hair(identity)
        if hair:
            parts.append(hair)
        if identity.skin_tone:
            parts.append(f"{identity.skin_tone} skin")
        if identity.eye_color:
            parts.append(f"{identity.eye_color} eyes")
        if identity.distinctive_features:
            parts.append(", ".join(identity.distinctive_features[:2]))
        if identity.primary_outfit and identity.primary_outfit.top:
            parts.append(f"wearing {identity.primary_outfit.top}")
        if len(parts) > 1:
            return " ".join(parts)

    if character.consistency_tag:
        return f"{character.name}: {character.consistency_tag}"

    return f"{character.name}: {_raw_excerpt(character, excerpt_chars)}"


def build_consistency_block(
    characters: Sequence[Character],
    names: Iterable[str],
    *,
    excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
) -> str:
    """Detailed descriptor for a scene, or an empty string when nobody qualifies."""
    selected = select_scene_characters(characters, names)
    if not selected:
        return ""
    lines = "\n".join(render_detailed_line(character, excerpt_chars=excerpt_chars) for character in selected)
    return f"{CONSISTENCY_HEADER}\n{lines}]"


def render_concise_line(character: Character) -> str:
    identity = character.visual_identity
    if identity is not None:
        parts = []
        if identity.hair_color:
            parts.append(f"{identity.hair_color} hair")
        if identity.primary_outfit and identity.primary_outfit.top:
            parts.append(identity.primary_outfit.top)
        if parts:
            return f"{character.name}: {', '.join(parts)}"
    if character.consistency_tag:
        return f"{character.name}: {character.consistency_tag}"
    return character.name


def build_concise_reference(characters: Sequence[Character], names: Iterable[str]) -> str:
    selected = select_scene_characters(characters, names)
    return "; ".join(render_concise_line(character) for character in selected)


def short_reference(character: Character) -> str:
    """Key identifiers embedded next to a character's name in page descriptions."""
    if character.consistency_tag:
        return character.consistency_tag
    identity = character.visual_identity
    if identity is not None:
        parts = []
        if identity.hair_color:
            parts.append(f"{identity.hair_color} hair")
        if identity.primary_outfit and identity.primary_outfit.top:
            parts.append(identity.primary_outfit.top)
        if identity.distinctive_features:
            parts.append(identity.distinctive_features[0])
        if parts:
            return ", ".join(parts)
    return _raw_excerpt(character, SHORT_EXCERPT_CHARS)


def derive_consistency_tag(identity: VisualIdentity, *, max_words: int = 20) -> str | None:
    parts: list[str] = []
    lead = " ".join(part for part in (identity.age_appearance, identity.gender, identity.species) if part)
    if lead:
        parts.append(lead)
    hair = _hair(identity)
    if hair:
        parts.append(hair)
    if identity.eye_color:
        parts.append(f"{identity.eye_color} eyes")
    if identity.primary_outfit and identity.primary_outfit.top:
        parts.append(f"wearing {identity.primary_outfit.top}")
    if identity.distinctive_features:
        parts.append(identity.distinctive_features[0])
    if not parts:
        return None

    words = ", ".join(parts).split()
    return " ".join(words[:max_words]).rstrip(",")


def cover_character_visuals(characters: Sequence[Character]) -> str:
    rendered: list[str] = []
    for character in characters:
        identity = character.visual_identity
        if identity is not None:
            fields = (
                ("species", identity.species),
                ("age", identity.age_appearance),
                ("gender", identity.gender),
                ("body", identity.body_type),
                ("skin", identity.skin_tone),
                ("hair style", identity.hair_style),
                ("hair color", identity.hair_color),
            )
            parts = [f"{label}: {value}" for label, value in fields if value]
            rendered.append(f"{character.name}: {', '.join(parts)}")
            continue
        fallback = character.consistency_tag or _raw_excerpt(character, SHORT_EXCERPT_CHARS)
        if fallback:
            rendered.append(fallback)
    return "; ".join(rendered)


def main_character_names(characters: Sequence[Character]) -> str:
    return ", ".join(
        f"{character.name} ({character.consistency_tag})" if character.consistency_tag else character.name
        for character in characters
        if character.role == "main"
    )
