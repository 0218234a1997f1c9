"""Tests for AskEngine relevance/focus detection and ImproveEngine purity."""

from __future__ import annotations

import json

import pytest

from codemapper.agent.enricher import NO_BACKEND_ANSWER, Enricher
from codemapper.errors import NotFoundError, ValidationError
from codemapper.mapper.ask import AskEngine, KeywordScorer, select_relevant_diagrams, wants_focus
from codemapper.mapper.improve import (
    DEFAULT_BORDER,
    HIGHLIGHT_BORDER,
    HIGHLIGHT_SHADOW,
    ImproveEngine,
    improve_diagram,
)
from codemapper.models import Cost, DiagramNode, MappingResponse, MappingSummary
from codemapper.storage.cache_store import CacheEntry, CachedContext
from tests.helpers import FakeProvider, diagrams_reply, make_diagram


def _diagrams():
    return [
        make_diagram("architecture", "architecture", "High-level Architecture", insights=["Modules overview."],
                     nodes=[DiagramNode(id="m1", label="lib (4)", insight="4 files mapped.")]),
        make_diagram("communication-flow", "communication_flow", "Communication Flowchart",
                     insights=["HTTP paths."],
                     nodes=[DiagramNode(id="c1", label="Client", insight="Requests originate here.")]),
        make_diagram("data-flow", "data_flow", "Data Flow",
                     insights=["Checkout writes payment intents to the ledger."],
                     nodes=[DiagramNode(id="d1", label="Payments API", insight="Charges cards.")]),
    ]


@pytest.fixture
def mapping(store):
    """Persist one mapping with three diagrams and return its id."""
    response = MappingResponse(
        mapping_id="map-1",
        cache_key="key-1",
        cache_hit=False,
        progress_logs=[],
        summary=MappingSummary(
            repo_name="acme/app", commit_sha="abc1234567", source="github",
            frameworks=[], languages=["TypeScript"], file_count=3, route_count=1,
            agent_count=0, generated_at="2026-01-01T00:00:00+00:00",
        ),
        diagrams=_diagrams(),
        cost=Cost(),
    )
    now = store.now()
    store.put(
        CacheEntry(cache_key="key-1", mapping_id="map-1", created_at=now, commit_sha="abc1234567",
                   repo_name="acme/app", focus_areas=[], response=response),
        CachedContext(mapping_id="map-1", created_at=now, summary_text="Repository: acme/app",
                      focus_areas=[], response=response),
    )
    return "map-1"


class TestRelevance:
    def test_keyword_score(self):
        diagram = _diagrams()[2]
        assert KeywordScorer().score(diagram, "payment ledger") == 2
        assert KeywordScorer().score(diagram, "kubernetes") == 0

    def test_top_scoring_first(self):
        relevant = select_relevant_diagrams(_diagrams(), "payment ledger")
        assert [d.id for d in relevant] == ["data-flow"]

    def test_caps_at_three(self):
        relevant = select_relevant_diagrams(_diagrams() * 2, "flow")
        assert len(relevant) == 3

    def test_fallback_first_two(self):
        relevant = select_relevant_diagrams(_diagrams(), "kubernetes helm")
        assert [d.id for d in relevant] == ["architecture", "communication-flow"]

    def test_custom_scorer(self):
        class Last:
            def score(self, diagram, question):
                return 1 if diagram.id == "communication-flow" else 0
        assert [d.id for d in select_relevant_diagrams(_diagrams(), "x", Last())] == ["communication-flow"]

    @pytest.mark.parametrize("question,expected", [
        ("Can you focus on auth?", True),
        ("regenerate the graph", True),
        ("Deep dive into the DATA FLOW", True),
        ("what handles payment flow?", True),
        ("who calls the ledger?", False),
    ])
    def test_wants_focus(self, question, expected):
        assert wants_focus(question) is expected


class TestAskEngine:
    def test_scenario_b_payment_flow_regenerates(self, store, mapping):
        response = AskEngine(store, Enricher(None)).ask(mapping, "what handles payment flow?")
        assert response.regenerated_diagrams is not None
        assert "data-flow" in [d.id for d in response.regenerated_diagrams]
        regenerated = next(d for d in response.regenerated_diagrams if d.id == "data-flow")
        assert regenerated.title.endswith(" (Refined)")

    def test_no_backend_answer(self, store, mapping):
        response = AskEngine(store, Enricher(None)).ask(mapping, "who calls the ledger?")
        assert response.answer.startswith(NO_BACKEND_ANSWER)
        assert response.answer.endswith("Most relevant diagrams: data-flow.")
        assert response.citations == []
        assert response.regenerated_diagrams is None

    def test_context_sent_to_backend(self, store, mapping):
        provider = FakeProvider('{"answer": "The ledger.", "citations": ["data-flow"]}')
        response = AskEngine(store, Enricher(provider)).ask(mapping, "who writes the ledger?")
        prompt = provider.prompts[0]
        assert "Repository: acme/app" in prompt
        assert "Relevant diagrams: data-flow" in prompt
        assert response.answer == "The ledger.\n\nMost relevant diagrams: data-flow."
        assert response.citations == ["data-flow"]
        assert store.cost_ledger()["total"]["prompt_tokens"] == 1000

    def test_unknown_mapping(self, store):
        with pytest.raises(NotFoundError, match="remap"):
            AskEngine(store, Enricher(None)).ask("missing", "anything?")

    def test_expired_mapping(self, store, mapping, clock):
        clock.advance(86_400 + 1)
        with pytest.raises(NotFoundError):
            AskEngine(store, Enricher(None)).ask(mapping, "anything?")

    def test_empty_question(self, store, mapping):
        with pytest.raises(ValidationError):
            AskEngine(store, Enricher(None)).ask(mapping, "   ")


class TestImproveDiagram:
    def test_highlights_matching_nodes(self):
        diagram = make_diagram()
        improved = improve_diagram(diagram, "store")
        hit, miss = improved.nodes[1], improved.nodes[0]
        assert hit.style["border"] == HIGHLIGHT_BORDER
        assert hit.style["boxShadow"] == HIGHLIGHT_SHADOW
        assert hit.insight == "Persisted state. Focused for query: store."
        assert miss.style["border"] == DEFAULT_BORDER
        assert miss.style["boxShadow"] == "none"
        assert miss.insight == "Requests enter here."

    def test_keeps_existing_border_on_miss(self):
        diagram = make_diagram()
        improved = improve_diagram(diagram, "input")
        assert improved.nodes[1].style["border"] == "1px solid #4f5fbd"

    def test_insight_prepended_and_title_suffix(self):
        improved = improve_diagram(make_diagram(), "store")
        assert improved.insights[0] == "Refined by mapper with focus: store."
        assert improved.insights[1:] == ["Seed insight."]
        assert improved.title == "Data Flow (Refined)"

    def test_insights_deduped_and_capped(self):
        diagram = make_diagram(insights=["Refined by mapper with focus: x."] + [f"i{n}" for n in range(10)])
        improved = improve_diagram(diagram, "x")
        assert improved.insights.count("Refined by mapper with focus: x.") == 1
        assert len(improved.insights) == 8

    def test_blank_instruction_uses_fallback_term(self):
        improved = improve_diagram(make_diagram(), "   ")
        assert improved.insights[0] == "Refined by mapper with focus: critical flow."

    def test_pure(self):
        diagram = make_diagram()
        before = json.dumps(diagram.to_dict(), sort_keys=True)
        improve_diagram(diagram, "store")
        assert json.dumps(diagram.to_dict(), sort_keys=True) == before


class TestImproveEngine:
    def test_repeat_calls_do_not_compound(self, store, mapping):
        engine = ImproveEngine(store)
        first = engine.improve(mapping, "data-flow", "payments")
        second = engine.improve(mapping, "data-flow", "payments")
        assert first == second
        assert first.title == "Data Flow (Refined)"
        assert first.nodes[0].insight == "Charges cards. Focused for query: payments."

    def test_default_instruction(self, store, mapping):
        improved = ImproveEngine(store).improve(mapping, "architecture")
        assert improved.insights[0] == "Refined by mapper with focus: clarity and readability."

    def test_scenario_c_unknown_diagram(self, store, mapping, cache_path):
        before = cache_path.read_text()
        with pytest.raises(NotFoundError, match="Diagram not found"):
            ImproveEngine(store).improve(mapping, "no-such-diagram", "x")
        assert cache_path.read_text() == before

    def test_unknown_mapping(self, store):
        with pytest.raises(NotFoundError, match="remap"):
            ImproveEngine(store).improve("missing", "data-flow")

    def test_cached_diagram_untouched(self, store, mapping):
        ImproveEngine(store).improve(mapping, "data-flow", "payments")
        cached = store.get_context(mapping).response.diagrams[2]
        assert cached.title == "Data Flow"

    def test_critique_pass_with_backend(self, store, mapping):
        critiqued = make_diagram("data-flow", "data_flow", "Data Flow (Refined, critiqued)")
        provider = FakeProvider(diagrams_reply([critiqued]))
        improved = ImproveEngine(store, Enricher(provider)).improve(mapping, "data-flow", "payments")
        assert improved.title == "Data Flow (Refined, critiqued)"
        assert "Critique the diagrams" in provider.prompts[0]
        assert "Commit: abc1234567" in provider.prompts[0]

    def test_critique_dropping_diagram_falls_back(self, store, mapping):
        provider = FakeProvider(diagrams_reply([make_diagram("other", "architecture", "Other")]))
        improved = ImproveEngine(store, Enricher(provider)).improve(mapping, "data-flow", "payments")
        assert improved.title == "Data Flow (Refined)"
