from __future__ import annotations

from enum import Enum


class Phase(str, Enum):
    STORY_INPUT = "story_input"
    ART_STYLE_SELECTION = "art_style_selection"
    CHARACTER_EXTRACTION = "character_extraction"
    AWAITING_AVATAR_INPUT = "awaiting_avatar_input"
    AVATAR_GENERATION = "avatar_generation"
    AWAITING_APPROVAL = "awaiting_approval"
    PAGE_GENERATION = "page_generation"
    AWAITING_PROMPT_REVIEW = "awaiting_prompt_review"
    ILLUSTRATION_GENERATION = "illustration_generation"
    COVER_GENERATION = "cover_generation"
    AWAITING_PAGE_REVIEW = "awaiting_page_review"
    COMPLETE = "complete"


class RunStatus(str, Enum):
    RUNNING = "running"
    AWAITING_INPUT = "awaiting_input"
    ERROR = "error"
    COMPLETE = "complete"


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED)


# Forward edges of the run state machine. Re-entering the current phase is always
# allowed (progress updates and retries after an error).
FORWARD_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.STORY_INPUT: frozenset({Phase.ART_STYLE_SELECTION}),
    Phase.ART_STYLE_SELECTION: frozenset({Phase.CHARACTER_EXTRACTION}),
    # Interactive path waits for avatars; the auto path generates them directly.
    Phase.CHARACTER_EXTRACTION: frozenset({Phase.AWAITING_AVATAR_INPUT, Phase.AVATAR_GENERATION}),
    Phase.AWAITING_AVATAR_INPUT: frozenset({Phase.AVATAR_GENERATION, Phase.PAGE_GENERATION}),
    Phase.AVATAR_GENERATION: frozenset({Phase.AWAITING_APPROVAL}),
    Phase.AWAITING_APPROVAL: frozenset({Phase.PAGE_GENERATION}),
    Phase.PAGE_GENERATION: frozenset({Phase.AWAITING_PROMPT_REVIEW}),
    Phase.AWAITING_PROMPT_REVIEW: frozenset({Phase.ILLUSTRATION_GENERATION}),
    Phase.ILLUSTRATION_GENERATION: frozenset({Phase.COVER_GENERATION, Phase.AWAITING_PAGE_REVIEW}),
    Phase.COVER_GENERATION: frozenset({Phase.AWAITING_PAGE_REVIEW}),
    Phase.AWAITING_PAGE_REVIEW: frozenset({Phase.COMPLETE}),
    Phase.COMPLETE: frozenset(),
}

# Explicit user operations that are allowed to move a run backwards.
REGENERATE_PAGES_FROM: frozenset[Phase] = frozenset(
    {
        Phase.AWAITING_PROMPT_REVIEW,
        Phase.ILLUSTRATION_GENERATION,
        Phase.COVER_GENERATION,
        Phase.AWAITING_PAGE_REVIEW,
    }
)
EDIT_SAVED_STORY_FROM: frozenset[Phase] = frozenset({Phase.COMPLETE})

_CURRENT_STEP: dict[Phase, int] = {
    Phase.STORY_INPUT: 0,
    Phase.ART_STYLE_SELECTION: 1,
    Phase.CHARACTER_EXTRACTION: 1,
    Phase.AWAITING_AVATAR_INPUT: 2,
    Phase.AVATAR_GENERATION: 2,
    Phase.AWAITING_APPROVAL: 2,
    Phase.PAGE_GENERATION: 3,
    Phase.AWAITING_PROMPT_REVIEW: 3,
    Phase.ILLUSTRATION_GENERATION: 3,
    Phase.COVER_GENERATION: 3,
    Phase.AWAITING_PAGE_REVIEW: 3,
    Phase.COMPLETE: 3,
}


def can_transition(current: Phase, target: Phase) -> bool:
    return target == current or target in FORWARD_TRANSITIONS[current]


def current_step(phase: Phase | str, status: RunStatus | str | None = None) -> int:
    """Wizard step shown for a draft. Status never changes the step."""
    return _CURRENT_STEP[Phase(phase)]
