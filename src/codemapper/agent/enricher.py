"""Best-effort AI enrichment: diagram refinement and question answering.

Nothing here raises to the caller. A missing provider, a provider error, or
an unparsable reply degrades to the input diagrams (or a canned answer) with
zero cost.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Sequence

from codemapper import config
from codemapper.agent.provider import GenerationProvider
from codemapper.diagrams.sanitize import coerce_diagram
from codemapper.models import Cost, DiagramPayload, RepositoryModel

logger = logging.getLogger(__name__)

REFINE_MODES = ("initial", "critique")

NO_BACKEND_ANSWER = (
    "Mapper context loaded. I can trace this path from the generated diagrams, "
    "but no live LLM key is configured for deeper semantic regeneration."
)
UNREACHABLE_ANSWER = "I could not reach the mapper model right now. Try again."
INVALID_FORMAT_ANSWER = "The mapper returned an invalid response format."
EMPTY_ANSWER = "No mapper answer produced."

_MODE_INSTRUCTIONS = {
    "initial": "Keep diagram ids stable where possible and improve clarity/readability.",
    "critique": (
        "Critique the diagrams below as a reviewer would: remove misleading edges, "
        "merge redundant nodes, and tighten insights. Keep diagram ids stable."
    ),
}


class InvalidReply(ValueError):
    """Raised when a model reply carries no parsable JSON object."""


def parse_json_block(text: str) -> dict:
    """Extract a JSON object from a reply: fenced ```json block first, else outermost braces."""
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL | re.IGNORECASE)
    candidates = []
    if fenced:
        candidates.append(fenced.group(1))
    start, end = text.find("{"), text.rfind("}")
    if start >= 0 and end > start:
        candidates.append(text[start:end + 1])
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    raise InvalidReply("Mapper agent returned invalid JSON.")


def estimate_usd(prompt_tokens: int, completion_tokens: int) -> float:
    return round(
        prompt_tokens / 1_000_000 * config.INPUT_USD_PER_M
        + completion_tokens / 1_000_000 * config.OUTPUT_USD_PER_M,
        6,
    )


def _cost(prompt_tokens: int, completion_tokens: int) -> Cost:
    return Cost(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        estimated_usd=estimate_usd(prompt_tokens, completion_tokens),
    )


class Enricher:
    """Wraps an optional GenerationProvider behind never-failing calls."""

    def __init__(self, provider: GenerationProvider | None = None) -> None:
        self._provider = provider

    @property
    def available(self) -> bool:
        return self._provider is not None

    def refine(
        self,
        model: RepositoryModel,
        diagrams: list[DiagramPayload],
        focus_areas: Sequence[str],
        summary_text: str,
        mode: str = "initial",
    ) -> tuple[list[DiagramPayload], Cost]:
        """One refinement pass. Returns the input diagrams and zero cost on any failure."""
        return self.refine_snapshot(
            model.repo_name, model.commit_sha, diagrams, focus_areas, summary_text, mode,
        )

    def refine_snapshot(
        self,
        repo_name: str,
        commit_sha: str,
        diagrams: list[DiagramPayload],
        focus_areas: Sequence[str],
        summary_text: str,
        mode: str = "initial",
    ) -> tuple[list[DiagramPayload], Cost]:
        """Same as refine(), for callers holding only cached summary fields."""
        if self._provider is None:
            return diagrams, Cost()
        if mode not in REFINE_MODES:
            raise ValueError(f"Unknown refinement mode {mode!r}")

        prompt = "\n".join([
            f"Repository: {repo_name}",
            f"Commit: {commit_sha}",
            f"Focus Areas: {', '.join(focus_areas) or 'none'}",
            "",
            "Repository summary:",
            summary_text,
            "",
            "Current diagram payloads (JSON):",
            json.dumps([d.to_dict() for d in diagrams], indent=2),
            "",
            'Return STRICT JSON with shape: { "diagrams": DiagramPayload[] }.',
            _MODE_INSTRUCTIONS[mode],
        ])

        t0 = time.perf_counter()
        try:
            completion = self._provider.generate(prompt, system=config.MAPPER_SYSTEM_PROMPT)
            data = parse_json_block(completion.text)
        except Exception as e:
            logger.warning("Refinement pass %r failed, keeping input diagrams: %s", mode, e)
            return diagrams, Cost()

        raw_diagrams = data.get("diagrams")
        if not isinstance(raw_diagrams, list):
            logger.warning("Refinement pass %r returned no diagram list, keeping input", mode)
            return diagrams, Cost()
        refined = [d for d in (coerce_diagram(raw) for raw in raw_diagrams) if d is not None]
        if not refined:
            logger.warning("Refinement pass %r returned no usable diagrams, keeping input", mode)
            return diagrams, Cost()

        cost = _cost(completion.prompt_tokens, completion.completion_tokens)
        logger.info(
            "Refinement pass %r: %d diagrams, %d/%d tokens, %.2fs",
            mode, len(refined), cost.prompt_tokens, cost.completion_tokens,
            time.perf_counter() - t0,
        )
        return refined, cost

    def answer(self, question: str, context: str) -> tuple[str, list[str], Cost]:
        """Answer a question against mapping context. Returns (answer, citations, cost)."""
        if self._provider is None:
            return NO_BACKEND_ANSWER, [], Cost()

        prompt = "\n".join([
            "Answer the user question about the codebase map using the provided context.",
            "If the user asks to focus/regenerate a path, identify the most relevant diagram ids.",
            'Return strict JSON: { "answer": string, "citations": string[] }.',
            "",
            f"Question: {question}",
            "",
            "Context:",
            context,
        ])

        try:
            completion = self._provider.generate(prompt, system=config.MAPPER_SYSTEM_PROMPT)
        except Exception as e:
            logger.warning("Ask call failed: %s", e)
            return UNREACHABLE_ANSWER, [], Cost()

        try:
            data = parse_json_block(completion.text)
        except InvalidReply:
            logger.warning("Ask reply unparsable (%d chars)", len(completion.text))
            return INVALID_FORMAT_ANSWER, [], Cost()

        answer = data.get("answer")
        citations = data.get("citations")
        return (
            answer if isinstance(answer, str) and answer.strip() else EMPTY_ANSWER,
            [str(c) for c in citations] if isinstance(citations, list) else [],
            _cost(completion.prompt_tokens, completion.completion_tokens),
        )
