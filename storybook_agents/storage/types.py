from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class InsertResult:
    id: int
    inserted: bool


@dataclass
class DraftRow:
    id: int
    run_id: str
    owner_id: str | None
    phase: str
    status: str
    current_step: int
    progress: int
    title: str | None
    snapshot_json: str
    snapshot_hash: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class StoryCharacterRow:
    id: int
    story_id: int
    name: str
    role: str
    description: str
    avatar_prompt: str
    consistency_tag: str | None
    visual_identity_json: str | None
    avatar_location: str | None
    has_reference_image: bool


@dataclass
class StoryPageRow:
    id: int
    story_id: int
    page_number: int
    text: str
    image_description: str
    characters_json: str
    illustration_location: str | None
    custom_description: str | None
    regenerated: bool


@dataclass
class StoryRow:
    id: int
    run_id: str
    owner_id: str | None
    title: str
    summary: str | None
    art_style: str | None
    art_style_prompt: str | None
    page_count: int
    target_audience: str
    cover_location: str | None
    snapshot_json: str
    created_at: datetime | None = None
    characters: list[StoryCharacterRow] = field(default_factory=list)
    pages: list[StoryPageRow] = field(default_factory=list)


@dataclass
class BatchRequestRow:
    id: int
    run_id: str
    owner_id: str | None
    story_title: str | None
    total_units: int
    completed_units: int
    status: str
    error_message: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime | None = None
    updated_at: datetime | None = None
