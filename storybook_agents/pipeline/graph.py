from __future__ import annotations

from typing import TYPE_CHECKING, TypedDict

from langgraph.graph import END, START, StateGraph

from storybook_agents.domain.phases import Phase

if TYPE_CHECKING:
    from storybook_agents.pipeline.service import StorybookService


class AutoRunState(TypedDict, total=False):
    run_id: str
    style_key: str | None
    custom_prompt: str | None
    phase: str


_ENTRY_BY_PHASE: dict[Phase, str] = {
    Phase.STORY_INPUT: "select_style",
    Phase.ART_STYLE_SELECTION: "extract_characters",
    Phase.CHARACTER_EXTRACTION: "extract_characters",
    Phase.AWAITING_AVATAR_INPUT: "generate_avatars",
    Phase.AVATAR_GENERATION: "generate_avatars",
    Phase.AWAITING_APPROVAL: "generate_pages",
    Phase.PAGE_GENERATION: "generate_pages",
    Phase.AWAITING_PROMPT_REVIEW: "generate_illustrations",
    Phase.ILLUSTRATION_GENERATION: "generate_illustrations",
    Phase.COVER_GENERATION: "generate_illustrations",
    Phase.AWAITING_PAGE_REVIEW: "finalize",
}


def entry_node(service: "StorybookService", run_id: str) -> str:
    """First node for a run, so a resumed draft continues where it stopped."""
    run_state = service.get_run(run_id)
    if run_state.phase == Phase.COMPLETE:
        return END
    if run_state.phase == Phase.ART_STYLE_SELECTION and run_state.art_style_decision is None:
        return "select_style"
    return _ENTRY_BY_PHASE[run_state.phase]


def build_storybook_graph(service: "StorybookService"):
    workflow = StateGraph(AutoRunState)

    async def _select_style(state: AutoRunState) -> dict:
        run_state = await service.select_art_style(
            state["run_id"], style_key=state.get("style_key"), custom_prompt=state.get("custom_prompt")
        )
        return {"phase": run_state.phase.value}

    async def _extract_characters(state: AutoRunState) -> dict:
        run_state = await service.extract_characters(state["run_id"], await_avatars=False)
        return {"phase": run_state.phase.value}

    async def _generate_avatars(state: AutoRunState) -> dict:
        run_state = await service.generate_all_avatars(state["run_id"])
        return {"phase": run_state.phase.value}

    async def _generate_pages(state: AutoRunState) -> dict:
        run_state = await service.generate_pages(state["run_id"])
        return {"phase": run_state.phase.value}

    async def _generate_illustrations(state: AutoRunState) -> dict:
        run_state = await service.generate_illustrations(state["run_id"])
        return {"phase": run_state.phase.value}

    async def _finalize(state: AutoRunState) -> dict:
        run_state = await service.finalize(state["run_id"])
        return {"phase": run_state.phase.value}

    def _route(state: AutoRunState) -> str:
        return entry_node(service, state["run_id"])

    workflow.add_node("select_style", _select_style)
    workflow.add_node("extract_characters", _extract_characters)
    workflow.add_node("generate_avatars", _generate_avatars)
    workflow.add_node("generate_pages", _generate_pages)
    workflow.add_node("generate_illustrations", _generate_illustrations)
    workflow.add_node("finalize", _finalize)

    workflow.add_conditional_edges(
        START,
        _route,
        ["select_style", "extract_characters", "generate_avatars", "generate_pages", "generate_illustrations", "finalize", END],
    )
    workflow.add_edge("select_style", "extract_characters")
    workflow.add_edge("extract_characters", "generate_avatars")
    workflow.add_edge("generate_avatars", "generate_pages")
    workflow.add_edge("generate_pages", "generate_illustrations")
    workflow.add_edge("generate_illustrations", "finalize")
    workflow.add_edge("finalize", END)

    return workflow.compile()
