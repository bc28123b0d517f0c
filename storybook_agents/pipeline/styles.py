from __future__ import annotations

from dataclasses import dataclass

DEFAULT_STYLE_KEY = "illustration"
CUSTOM_STYLE_KEY = "custom"


@dataclass(frozen=True)
class ArtStyle:
    key: str
    name: str
    description: str
    prompt: str
    best_for: tuple[str, ...]


ART_STYLES: dict[str, ArtStyle] = {
    style.key: style
    for style in (
        ArtStyle(
            key="flatvector",
            name="Flat Vector",
            description="Minimalist flat vector illustration with clean shapes and bold colors",
            prompt=(
                "flat vector illustration, minimalist, clean shapes, sharp lines, bold and simple color palette, "
                "minimal shading, modern, digital art style"
            ),
            best_for=("modern stories", "educational content", "simple and clear visuals"),
        ),
        ArtStyle(
            key="illustration",
            name="Illustration",
            description="Classic children's book illustration style, warm and inviting",
            prompt="children's book illustration, warm colors, soft lighting, detailed, whimsical, hand-painted look",
            best_for=("children's stories", "fairy tales", "bedtime stories"),
        ),
        ArtStyle(
            key="cartoon",
            name="Cartoon",
            description="Fun, exaggerated cartoon style with bold colors",
            prompt=(
                "cartoon style, bold outlines, bright vibrant colors, exaggerated expressions, fun and playful, "
                "clean lines"
            ),
            best_for=("comedy", "adventure", "family stories"),
        ),
        ArtStyle(
            key="comic",
            name="Comic",
            description="Western comic book style with dynamic action",
            prompt=(
                "comic book art style, dynamic poses, bold ink lines, cel shading, dramatic lighting, action-packed"
            ),
            best_for=("action", "superhero", "mystery"),
        ),
        ArtStyle(
            key="webtoon",
            name="Webtoon",
            description="Korean webtoon style, modern and appealing",
            prompt=(
                "webtoon art style, clean digital art, soft gradients, expressive characters, "
                "pastel and vibrant colors"
            ),
            best_for=("drama", "slice of life", "modern settings"),
        ),
        ArtStyle(
            key="manga",
            name="Manga",
            description="Japanese manga style with expressive characters",
            prompt=(
                "manga art style, detailed linework, screentone shading, expressive eyes, dynamic composition"
            ),
            best_for=("drama", "action", "school life"),
        ),
        ArtStyle(
            key="anime",
            name="Anime-style Art",
            description="Japanese anime aesthetic with vibrant colors",
            prompt=(
                "anime art style, vibrant colors, detailed eyes, clean linework, dynamic poses, cel-shaded, "
                "beautiful backgrounds"
            ),
            best_for=("fantasy", "adventure", "magical stories"),
        ),
        ArtStyle(
            key="chibi",
            name="Chibi",
            description="Cute, super-deformed style with big heads",
            prompt=(
                "chibi art style, super deformed, cute characters, big heads, small bodies, adorable expressions, "
                "pastel colors, simple backgrounds"
            ),
            best_for=("cute stories", "comedy", "children"),
        ),
        ArtStyle(
            key="storyboard",
            name="Storyboard",
            description="Cinematic storyboard style for sequential storytelling",
            prompt=(
                "storyboard art style, cinematic composition, sketch-like quality, dynamic camera angles, "
                "grayscale with color accents"
            ),
            best_for=("action sequences", "film-like narratives"),
        ),
        ArtStyle(
            key="oil",
            name="Oil",
            description="Oil painting art style with rich colors and textures",
            prompt="oil painting art style, rich colors, textures, rich lighting, detailed, hand-painted look",
            best_for=("fairy tales", "classic tales"),
        ),
        ArtStyle(
            key="pastel",
            name="Pastel",
            description="Pastel painting art style with soft colors and textures",
            prompt="pastel painting art style, soft colors, textures, soft lighting, whimsical, hand-painted look",
            best_for=("bedtime stories", "gentle tales"),
        ),
        ArtStyle(
            key="pencil",
            name="Pencil",
            description="Pencil drawing art style with soft shading",
            prompt="pencil drawing art style, soft shading, textures, soft lighting, detailed, sketchbook look",
            best_for=("quiet stories", "nature stories"),
        ),
        ArtStyle(
            key="pixel",
            name="Pixel",
            description="Retro pixel art style",
            prompt="pixel art style, retro game look, limited palette, crisp pixels, playful",
            best_for=("game-inspired stories", "retro adventures"),
        ),
    )
}


def is_valid_style(key: str | None) -> bool:
    return bool(key) and key.strip().lower() in ART_STYLES


def get_style(key: str) -> ArtStyle:
    """Catalogue entry for ``key``; unknown keys fall back to the default style."""
    return ART_STYLES.get(key.strip().lower(), ART_STYLES[DEFAULT_STYLE_KEY])


def style_catalogue_text() -> str:
    return "\n".join(
        f"- {style.key}: {style.name} - {style.description}. Best for: {', '.join(style.best_for)}"
        for style in ART_STYLES.values()
    )
