from __future__ import annotations

from langgraph.graph import END

from storybook_agents.domain.models import ArtStyleDecision, Run
from storybook_agents.domain.phases import Phase, RunStatus
from storybook_agents.pipeline.graph import build_storybook_graph, entry_node


class _FakeService:
    def __init__(self, run: Run) -> None:
        self.run = run

    def get_run(self, run_id: str) -> Run:
        return self.run


def _decision() -> ArtStyleDecision:
    return ArtStyleDecision(selected_style="cartoon", style_prompt="cartoon", source="user_preference")


def test_new_run_starts_with_style_selection() -> None:
    assert entry_node(_FakeService(Run(id="r1", story="s")), "r1") == "select_style"


def test_style_phase_without_decision_restarts_selection() -> None:
    pending = Run(id="r1", story="s", phase=Phase.ART_STYLE_SELECTION, status=RunStatus.ERROR)
    decided = pending.model_copy(update={"art_style_decision": _decision(), "status": RunStatus.AWAITING_INPUT})

    assert entry_node(_FakeService(pending), "r1") == "select_style"
    assert entry_node(_FakeService(decided), "r1") == "extract_characters"


def test_resumed_runs_continue_where_they_stopped() -> None:
    expected = {
        Phase.AWAITING_AVATAR_INPUT: "generate_avatars",
        Phase.AWAITING_APPROVAL: "generate_pages",
        Phase.PAGE_GENERATION: "generate_pages",
        Phase.AWAITING_PROMPT_REVIEW: "generate_illustrations",
        Phase.COVER_GENERATION: "generate_illustrations",
        Phase.AWAITING_PAGE_REVIEW: "finalize",
        Phase.COMPLETE: END,
    }
    for phase, node in expected.items():
        run = Run(id="r1", story="s", phase=phase, art_style_decision=_decision())
        assert entry_node(_FakeService(run), "r1") == node, phase


def test_graph_compiles_with_every_phase_node() -> None:
    graph = build_storybook_graph(_FakeService(Run(id="r1", story="s")))

    nodes = set(graph.get_graph().nodes)
    assert {
        "select_style",
        "extract_characters",
        "generate_avatars",
        "generate_pages",
        "generate_illustrations",
        "finalize",
    } <= nodes
