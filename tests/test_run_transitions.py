from __future__ import annotations

import pytest

from storybook_agents.domain.errors import InvalidTransitionError
from storybook_agents.domain.models import (
    AssetRef,
    Character,
    Cover,
    Page,
    Run,
    VisualIdentity,
    add_page,
    apply_avatar_result,
    apply_illustration_result,
    delete_page,
    edit_page,
    refine_character,
)
from storybook_agents.domain.phases import Phase, RunStatus
from storybook_agents.pipeline.run import PhaseResult, advance, reopen_for_edit, restart_page_generation


def _asset(name: str) -> AssetRef:
    return AssetRef(location=f"/assets/{name}.png", prompt="p")


def _pages(count: int, *, illustrated: bool = False) -> list[Page]:
    pages = [Page(page_number=index, text=f"text {index}") for index in range(1, count + 1)]
    if illustrated:
        pages = [apply_illustration_result(page, _asset(f"p{page.page_number}")) for page in pages]
    return pages


def test_advance_moves_forward_and_applies_updates() -> None:
    run = Run(id="r1", story="Once upon a time")

    started = advance(run, PhaseResult.started(Phase.ART_STYLE_SELECTION, progress=10))
    assert started.phase == Phase.ART_STYLE_SELECTION
    assert started.status == RunStatus.RUNNING

    done = advance(started, PhaseResult.waiting(Phase.ART_STYLE_SELECTION, progress=20, title="T"))
    assert done.status == RunStatus.AWAITING_INPUT
    assert done.progress == 20
    assert done.title == "T"
    assert run.phase == Phase.STORY_INPUT


def test_advance_rejects_invalid_transition() -> None:
    run = Run(id="r1", story="s")

    with pytest.raises(InvalidTransitionError):
        advance(run, PhaseResult.started(Phase.PAGE_GENERATION))


def test_advance_rejects_unknown_update_fields() -> None:
    run = Run(id="r1", story="s")

    with pytest.raises(ValueError):
        advance(run, PhaseResult.waiting(Phase.STORY_INPUT, story="other"))


def test_failed_result_keeps_phase_and_records_error() -> None:
    run = Run(id="r1", story="s", phase=Phase.CHARACTER_EXTRACTION, status=RunStatus.RUNNING, progress=25)

    failed = advance(run, PhaseResult.failed(Phase.CHARACTER_EXTRACTION, "text service down"))

    assert failed.phase == Phase.CHARACTER_EXTRACTION
    assert failed.status == RunStatus.ERROR
    assert failed.error == "text service down"
    assert failed.progress == 25

    retried = advance(failed, PhaseResult.started(Phase.CHARACTER_EXTRACTION))
    assert retried.status == RunStatus.RUNNING
    assert retried.error is None


def test_progress_is_monotonic_within_a_phase() -> None:
    run = Run(id="r1", story="s", phase=Phase.ILLUSTRATION_GENERATION, status=RunStatus.RUNNING, progress=80)

    ticked = advance(run, PhaseResult.started(Phase.ILLUSTRATION_GENERATION, progress=72))

    assert ticked.progress == 80


def test_complete_phase_forces_complete_status() -> None:
    run = Run(id="r1", story="s", phase=Phase.AWAITING_PAGE_REVIEW, pages=_pages(2))

    done = advance(run, PhaseResult.waiting(Phase.COMPLETE, progress=100))

    assert done.status == RunStatus.COMPLETE


def test_restart_page_generation_discards_pages() -> None:
    run = Run(id="r1", story="s", phase=Phase.AWAITING_PAGE_REVIEW, pages=_pages(5, illustrated=True))

    restarted = restart_page_generation(run, page_count=8)

    assert restarted.phase == Phase.PAGE_GENERATION
    assert restarted.pages == []
    assert restarted.page_count == 8

    with pytest.raises(InvalidTransitionError):
        restart_page_generation(Run(id="r2", story="s"), page_count=8)


def test_reopen_for_edit_resets_every_approval() -> None:
    pages = [page.model_copy(update={"approved": True}) for page in _pages(3, illustrated=True)]
    cover = Cover(title="T", approved=True)
    run = Run(id="r1", story="s", phase=Phase.COMPLETE, status=RunStatus.COMPLETE, pages=pages, cover=cover)

    reopened = reopen_for_edit(run)

    assert reopened.phase == Phase.AWAITING_PAGE_REVIEW
    assert reopened.status == RunStatus.AWAITING_INPUT
    assert not any(page.approved for page in reopened.pages)
    assert reopened.cover is not None and not reopened.cover.approved
    assert all(page.is_illustrated for page in reopened.pages)


def test_edit_page_resets_only_that_page() -> None:
    page = _pages(1, illustrated=True)[0].model_copy(update={"approved": True})

    edited = edit_page(page, image_description="A new scene")

    assert edited.illustration is None
    assert not edited.approved
    assert edited.regenerated
    assert edited.has_custom_description
    assert edited.effective_description == "A new scene"


def test_add_and_delete_keep_pages_contiguous() -> None:
    pages = add_page(_pages(3), text="extra")
    assert [page.page_number for page in pages] == [1, 2, 3, 4]

    trimmed = delete_page(pages, 2)
    assert [page.page_number for page in trimmed] == [1, 2, 3]
    assert [page.text for page in trimmed] == ["text 1", "text 3", "extra"]


def test_avatar_result_and_refine_are_the_only_identity_edits() -> None:
    identity = VisualIdentity(hair_color="red", eye_color="green")
    character = Character(name="Mia", role="main", visual_identity=identity, consistency_tag="red hair")

    with_avatar = apply_avatar_result(character, _asset("mia"), custom_description="in a raincoat")
    assert with_avatar.visual_identity == identity
    assert with_avatar.consistency_tag == "red hair"
    assert with_avatar.customized
    assert with_avatar.avatar_generated

    refined = refine_character(with_avatar, consistency_tag="short red hair, green eyes")
    assert refined.consistency_tag == "short red hair, green eyes"
    assert refined.visual_identity == identity


def test_records_are_frozen() -> None:
    page = Page(page_number=1, text="t")

    with pytest.raises(Exception):
        page.text = "changed"  # type: ignore[misc]
