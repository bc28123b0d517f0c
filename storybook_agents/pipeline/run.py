from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from storybook_agents.domain.errors import InvalidTransitionError
from storybook_agents.domain.models import Run, reset_approvals
from storybook_agents.domain.phases import (
    EDIT_SAVED_STORY_FROM,
    REGENERATE_PAGES_FROM,
    Phase,
    RunStatus,
    can_transition,
)

# Fields a phase result may replace on the run.
_UPDATABLE_FIELDS = frozenset(
    {
        "art_style_decision",
        "characters",
        "pages",
        "cover",
        "title",
        "summary",
        "page_count",
    }
)


@dataclass(frozen=True)
class PhaseResult:
    """Outcome of one unit of pipeline work, applied by :func:`advance`."""

    phase: Phase
    status: RunStatus
    progress: int | None = None
    message: str = ""
    updates: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def started(cls, phase: Phase, *, progress: int | None = None, message: str = "") -> "PhaseResult":
        return cls(phase=phase, status=RunStatus.RUNNING, progress=progress, message=message)

    @classmethod
    def waiting(cls, phase: Phase, *, progress: int | None = None, message: str = "", **updates: Any) -> "PhaseResult":
        return cls(phase=phase, status=RunStatus.AWAITING_INPUT, progress=progress, message=message, updates=updates)

    @classmethod
    def failed(cls, phase: Phase, error: str) -> "PhaseResult":
        return cls(phase=phase, status=RunStatus.ERROR, message=error, error=error)


def advance(run: Run, result: PhaseResult) -> Run:
    """Apply ``result`` to ``run`` and return the new run.

    Forward moves must follow the transition table. A failed result keeps the
    phase that was being attempted.
    """
    unknown = set(result.updates) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"PhaseResult carries unsupported updates: {sorted(unknown)}")

    if result.status == RunStatus.ERROR:
        return run.model_copy(
            update={
                "status": RunStatus.ERROR,
                "error": result.error or "unknown error",
                "message": result.message,
            }
        )

    if not can_transition(run.phase, result.phase):
        raise InvalidTransitionError(run.phase.value, result.phase.value)

    progress = run.progress
    if result.progress is not None:
        progress = max(run.progress, result.progress) if result.phase == run.phase else result.progress

    status = RunStatus.COMPLETE if result.phase == Phase.COMPLETE else result.status
    update: dict[str, Any] = {
        "phase": result.phase,
        "status": status,
        "progress": progress,
        "message": result.message or run.message,
        "error": None,
    }
    update.update(result.updates)
    return run.model_copy(update=update)


def restart_page_generation(run: Run, *, page_count: int) -> Run:
    """Discard every page and re-enter page generation with a new page count."""
    if run.phase not in REGENERATE_PAGES_FROM:
        raise InvalidTransitionError(run.phase.value, Phase.PAGE_GENERATION.value)
    return run.model_copy(
        update={
            "phase": Phase.PAGE_GENERATION,
            "status": RunStatus.RUNNING,
            "progress": 50,
            "message": f"Regenerating pages with {page_count} pages",
            "page_count": page_count,
            "pages": [],
            "error": None,
        }
    )


def reopen_for_edit(run: Run) -> Run:
    """Re-enter page review from a completed run with every approval cleared."""
    if run.phase not in EDIT_SAVED_STORY_FROM:
        raise InvalidTransitionError(run.phase.value, Phase.AWAITING_PAGE_REVIEW.value)
    reopened = reset_approvals(run)
    return reopened.model_copy(
        update={
            "phase": Phase.AWAITING_PAGE_REVIEW,
            "status": RunStatus.AWAITING_INPUT,
            "progress": 95,
            "message": "Story loaded for editing",
            "error": None,
        }
    )
