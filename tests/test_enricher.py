"""Tests for AI enrichment fallbacks, JSON extraction and cost estimation."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from codemapper.agent import enricher as enricher_mod
from codemapper.agent.enricher import (
    EMPTY_ANSWER,
    INVALID_FORMAT_ANSWER,
    NO_BACKEND_ANSWER,
    UNREACHABLE_ANSWER,
    Enricher,
    InvalidReply,
    estimate_usd,
    parse_json_block,
)
from codemapper.agent.provider import GeminiProvider, create_provider
from codemapper.diagrams.sanitize import PLACEHOLDER_MERMAID
from codemapper.models import Cost, RepositoryModel
from tests.helpers import FakeProvider, RaisingProvider, diagrams_reply, make_diagram


@pytest.fixture
def model():
    return RepositoryModel(repo_name="acme/app", source="github", commit_sha="abc1234567", root_path="/tmp")


@pytest.fixture
def seeds():
    return [make_diagram("architecture", "architecture", "Arch"), make_diagram()]


class TestParseJsonBlock:
    def test_plain_object(self):
        assert parse_json_block('{"a": 1}') == {"a": 1}

    def test_fenced_block_preferred(self):
        text = 'Note {ignored}\n```json\n{"answer": "yes"}\n```\ntrailing }'
        assert parse_json_block(text) == {"answer": "yes"}

    def test_outermost_braces(self):
        assert parse_json_block('Sure! {"a": {"b": 2}} hope that helps') == {"a": {"b": 2}}

    def test_invalid(self):
        with pytest.raises(InvalidReply):
            parse_json_block("no json here")

    def test_array_rejected(self):
        with pytest.raises(InvalidReply):
            parse_json_block("[1, 2, 3]")


class TestEstimateUsd:
    def test_pricing(self):
        with patch.object(enricher_mod.config, "INPUT_USD_PER_M", 0.30), \
             patch.object(enricher_mod.config, "OUTPUT_USD_PER_M", 2.50):
            assert estimate_usd(1_000_000, 0) == 0.3
            assert estimate_usd(1000, 200) == round(0.0003 + 0.0005, 6)

    def test_rounded_to_six_places(self):
        value = estimate_usd(1, 1)
        assert value == round(value, 6)


class TestRefine:
    def test_no_provider_returns_input(self, model, seeds):
        diagrams, cost = Enricher(None).refine(model, seeds, [], "summary")
        assert diagrams is seeds
        assert cost.is_zero()

    def test_raising_provider(self, model, seeds, caplog):
        provider = RaisingProvider()
        diagrams, cost = Enricher(provider).refine(model, seeds, [], "summary")
        assert diagrams is seeds
        assert cost.is_zero()
        assert provider.calls == 1
        assert "keeping input diagrams" in caplog.text

    def test_malformed_reply(self, model, seeds):
        diagrams, cost = Enricher(FakeProvider("not json at all")).refine(model, seeds, [], "summary")
        assert diagrams is seeds
        assert cost == Cost()

    def test_reply_without_diagram_list(self, model, seeds):
        diagrams, cost = Enricher(FakeProvider('{"diagrams": "nope"}')).refine(model, seeds, [], "summary")
        assert diagrams is seeds
        assert cost.is_zero()

    def test_reply_with_no_usable_diagrams(self, model, seeds):
        diagrams, cost = Enricher(FakeProvider('{"diagrams": [1, "x"]}')).refine(model, seeds, [], "summary")
        assert diagrams is seeds
        assert cost.is_zero()

    def test_refined_diagrams_are_sanitized(self, model, seeds):
        refined = make_diagram("architecture", "architecture", "Arch v2", insights=[f"i{n}" for n in range(11)])
        refined.mermaid = ""
        provider = FakeProvider(diagrams_reply([refined], fenced=True), prompt_tokens=2000, completion_tokens=400)
        diagrams, cost = Enricher(provider).refine(model, seeds, ["data_flow"], "summary")
        assert [d.title for d in diagrams] == ["Arch v2"]
        assert diagrams[0].mermaid == PLACEHOLDER_MERMAID
        assert len(diagrams[0].insights) == 8
        assert cost.prompt_tokens == 2000
        assert cost.completion_tokens == 400
        assert cost.estimated_usd == estimate_usd(2000, 400)

    def test_prompt_carries_summary_not_tree(self, model, seeds):
        provider = FakeProvider(diagrams_reply(seeds))
        Enricher(provider).refine(model, seeds, ["data_flow"], "Repository: acme/app\nFiles analyzed: 3")
        prompt = provider.prompts[0]
        assert "Repository: acme/app" in prompt
        assert "Commit: abc1234567" in prompt
        assert "Focus Areas: data_flow" in prompt
        assert '"diagrams"' in prompt
        assert json.dumps(seeds[0].to_dict(), indent=2).splitlines()[1] in prompt

    def test_critique_mode_prompt(self, model, seeds):
        provider = FakeProvider(diagrams_reply(seeds))
        Enricher(provider).refine(model, seeds, [], "summary", mode="critique")
        assert "Critique the diagrams" in provider.prompts[0]

    def test_unknown_mode(self, model, seeds):
        with pytest.raises(ValueError):
            Enricher(FakeProvider("{}")).refine(model, seeds, [], "summary", mode="bogus")


class TestAnswer:
    def test_no_provider_canned(self):
        answer, citations, cost = Enricher(None).answer("why?", "context")
        assert answer == NO_BACKEND_ANSWER
        assert citations == []
        assert cost.is_zero()

    def test_provider_failure(self):
        answer, citations, cost = Enricher(RaisingProvider()).answer("why?", "context")
        assert answer == UNREACHABLE_ANSWER
        assert cost.is_zero()

    def test_unparsable(self):
        answer, _, cost = Enricher(FakeProvider("plain words")).answer("why?", "context")
        assert answer == INVALID_FORMAT_ANSWER
        assert cost.is_zero()

    def test_empty_answer(self):
        answer, citations, cost = Enricher(FakeProvider('{"answer": "  ", "citations": ["a"]}')).answer("q", "c")
        assert answer == EMPTY_ANSWER
        assert citations == ["a"]
        assert not cost.is_zero()

    def test_answer_and_citations(self):
        provider = FakeProvider('{"answer": "The payments route.", "citations": ["app/api/payments/route.ts"]}')
        answer, citations, cost = Enricher(provider).answer("what handles payments?", "CTX")
        assert answer == "The payments route."
        assert citations == ["app/api/payments/route.ts"]
        assert cost.prompt_tokens == 1000
        assert "Question: what handles payments?" in provider.prompts[0]
        assert "CTX" in provider.prompts[0]


class TestGeminiProvider:
    def test_create_provider_without_key(self):
        with patch("codemapper.agent.provider.config") as mock_config:
            mock_config.GEMINI_API_KEY = ""
            assert create_provider() is None

    def test_generate_reports_usage(self):
        with patch("codemapper.agent.provider.genai") as mock_genai:
            response = MagicMock()
            response.text = '{"answer": "ok"}'
            response.usage_metadata.prompt_token_count = 120
            response.usage_metadata.candidates_token_count = 30
            mock_genai.Client.return_value.models.generate_content.return_value = response

            provider = GeminiProvider(api_key="test-key", model="gemini-test")
            completion = provider.generate("prompt", system="sys")

        assert completion.text == '{"answer": "ok"}'
        assert (completion.prompt_tokens, completion.completion_tokens) == (120, 30)
        kwargs = mock_genai.Client.return_value.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-test"
        assert kwargs["config"].response_mime_type == "application/json"
        assert kwargs["config"].system_instruction == "sys"

    def test_missing_usage(self):
        with patch("codemapper.agent.provider.genai") as mock_genai:
            response = MagicMock()
            response.text = None
            response.usage_metadata = None
            mock_genai.Client.return_value.models.generate_content.return_value = response
            completion = GeminiProvider(api_key="k").generate("p")
        assert completion.text == ""
        assert completion.prompt_tokens == 0
