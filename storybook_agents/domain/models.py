"""Typed records for one storybook generation run.

Every record is frozen. Updates go through the named transition functions at the
bottom of this module, which return new values instead of merging fragments.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storybook_agents.domain.phases import Phase, RunStatus

CharacterRole = Literal["main", "supporting", "minor"]
StyleSource = Literal["user_custom_prompt", "user_preference", "ai_recommendation", "default"]


class _Record(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class Outfit(_Record):
    top: str | None = None
    bottom: str | None = None
    footwear: str | None = None
    accessories: list[str] = Field(default_factory=list)


class VisualIdentity(_Record):
    species: str | None = None
    age_appearance: str | None = None
    gender: str | None = None
    body_type: str | None = None
    skin_tone: str | None = None
    hair_color: str | None = None
    hair_style: str | None = None
    eye_color: str | None = None
    distinctive_features: list[str] = Field(default_factory=list)
    primary_outfit: Outfit | None = None


class AssetRef(_Record):
    """Opaque location of a stored image plus how it was produced."""

    location: str
    prompt: str = ""
    used_references: bool = False
    model: str | None = None


class ArtStyleDecision(_Record):
    selected_style: str
    style_prompt: str
    source: StyleSource
    reasoning: str = ""
    confidence: float | None = None
    alternatives: list[str] = Field(default_factory=list)


class Character(_Record):
    name: str
    role: CharacterRole = "supporting"
    description: str = ""
    avatar_prompt: str = ""
    custom_description: str | None = None
    visual_identity: VisualIdentity | None = None
    consistency_tag: str | None = None
    avatar: AssetRef | None = None
    avatar_generated: bool = False
    customized: bool = False
    has_reference_image: bool = False

    @field_validator("name")
    @classmethod
    def _non_empty_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("character name cannot be empty")
        return value


class Page(_Record):
    page_number: int
    text: str
    image_description: str = ""
    original_description: str = ""
    action: str = ""
    emotion: str = ""
    scene: str = ""
    characters_in_scene: list[str] = Field(default_factory=list)
    illustration: AssetRef | None = None
    illustration_generated: bool = False
    approved: bool = False
    regenerated: bool = False
    has_custom_description: bool = False
    custom_description: str | None = None

    @property
    def is_illustrated(self) -> bool:
        return self.illustration_generated and self.illustration is not None

    @property
    def effective_description(self) -> str:
        if self.has_custom_description and self.custom_description:
            return self.custom_description
        return self.image_description


class Cover(_Record):
    title: str
    summary: str = ""
    illustration: AssetRef | None = None
    illustration_generated: bool = False
    approved: bool = False
    regenerated: bool = False
    custom_description: str | None = None

    @property
    def is_illustrated(self) -> bool:
        return self.illustration_generated and self.illustration is not None


class Run(_Record):
    id: str
    phase: Phase = Phase.STORY_INPUT
    status: RunStatus = RunStatus.AWAITING_INPUT
    progress: int = 0
    message: str = ""
    story: str
    target_audience: str = "children"
    page_count: int | None = None
    generate_cover: bool = True
    art_style_decision: ArtStyleDecision | None = None
    title: str | None = None
    summary: str | None = None
    characters: list[Character] = Field(default_factory=list)
    pages: list[Page] = Field(default_factory=list)
    cover: Cover | None = None
    error: str | None = None
    owner_id: str | None = None
    original_story_id: int | None = None

    @field_validator("progress")
    @classmethod
    def _progress_range(cls, value: int) -> int:
        if not 0 <= value <= 100:
            raise ValueError("progress must be between 0 and 100")
        return value

    def find_character(self, name: str) -> Character | None:
        needle = name.strip().lower()
        for character in self.characters:
            if character.name.lower() == needle:
                return character
        return None

    def find_page(self, page_number: int) -> Page | None:
        for page in self.pages:
            if page.page_number == page_number:
                return page
        return None

    @property
    def cover_needed(self) -> bool:
        return self.generate_cover and (self.cover is None or not self.cover.is_illustrated)


def apply_avatar_result(
    character: Character,
    asset: AssetRef,
    *,
    custom_description: str | None = None,
    has_reference_image: bool = False,
) -> Character:
    updates: dict[str, object] = {
        "avatar": asset,
        "avatar_generated": True,
        "has_reference_image": character.has_reference_image or has_reference_image,
    }
    if custom_description:
        updates["custom_description"] = custom_description
        updates["customized"] = True
    return character.model_copy(update=updates)


def refine_character(
    character: Character,
    *,
    visual_identity: VisualIdentity | None = None,
    consistency_tag: str | None = None,
    description: str | None = None,
) -> Character:
    """Explicit edit, the only way a settled identity may change."""
    updates: dict[str, object] = {"customized": True}
    if visual_identity is not None:
        updates["visual_identity"] = visual_identity
    if consistency_tag is not None:
        updates["consistency_tag"] = consistency_tag.strip() or None
    if description is not None:
        updates["description"] = description
    return character.model_copy(update=updates)


def apply_illustration_result(page: Page, asset: AssetRef, *, regenerated: bool = False) -> Page:
    return page.model_copy(
        update={
            "illustration": asset,
            "illustration_generated": True,
            "approved": False,
            "regenerated": page.regenerated or regenerated,
        }
    )


def apply_cover_result(cover: Cover, asset: AssetRef, *, regenerated: bool = False) -> Cover:
    return cover.model_copy(
        update={
            "illustration": asset,
            "illustration_generated": True,
            "approved": False,
            "regenerated": cover.regenerated or regenerated,
        }
    )


def with_custom_description(page: Page, description: str) -> Page:
    return page.model_copy(
        update={
            "has_custom_description": True,
            "custom_description": description,
            "image_description": description,
        }
    )


def edit_page(page: Page, *, text: str | None = None, image_description: str | None = None) -> Page:
    """Edit one page; only that page's illustration and approval are reset."""
    updates: dict[str, object] = {
        "illustration": None,
        "illustration_generated": False,
        "approved": False,
        "regenerated": True,
    }
    if text is not None:
        updates["text"] = text
    if image_description is not None:
        updates["image_description"] = image_description
        updates["has_custom_description"] = True
        updates["custom_description"] = image_description
    return page.model_copy(update=updates)


def renumber_pages(pages: list[Page]) -> list[Page]:
    return [
        page if page.page_number == index else page.model_copy(update={"page_number": index})
        for index, page in enumerate(pages, start=1)
    ]


def add_page(pages: list[Page], *, text: str, image_description: str = "") -> list[Page]:
    new_page = Page(
        page_number=len(pages) + 1,
        text=text,
        image_description=image_description,
        original_description=image_description,
    )
    return renumber_pages([*pages, new_page])


def delete_page(pages: list[Page], page_number: int) -> list[Page]:
    return renumber_pages([page for page in pages if page.page_number != page_number])


def replace_page(pages: list[Page], updated: Page) -> list[Page]:
    return [updated if page.page_number == updated.page_number else page for page in pages]


def replace_character(characters: list[Character], updated: Character) -> list[Character]:
    needle = updated.name.lower()
    return [updated if character.name.lower() == needle else character for character in characters]


def reset_approvals(run: Run) -> Run:
    pages = [page.model_copy(update={"approved": False}) for page in run.pages]
    cover = run.cover.model_copy(update={"approved": False}) if run.cover else None
    return run.model_copy(update={"pages": pages, "cover": cover})
