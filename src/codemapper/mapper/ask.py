"""Question answering over a cached mapping."""

from __future__ import annotations

import json
import logging
import re
from typing import Protocol

from codemapper.agent.enricher import Enricher
from codemapper.errors import NotFoundError, ValidationError
from codemapper.mapper.improve import improve_diagram
from codemapper.models import AskResponse, DiagramPayload
from codemapper.storage.cache_store import CacheStore

logger = logging.getLogger(__name__)

MAX_RELEVANT = 3
FALLBACK_COUNT = 2

_FOCUS_RE = re.compile(
    r"focus|regenerat|refine|deep dive|drill|payment flow|auth flow|data flow",
    re.IGNORECASE,
)


class DiagramScorer(Protocol):
    """Scores how relevant a diagram is to a question. Higher is better; 0 is unrelated."""

    def score(self, diagram: DiagramPayload, question: str) -> int: ...


class KeywordScorer:
    """Counts question terms that occur as substrings of the diagram's text."""

    def score(self, diagram: DiagramPayload, question: str) -> int:
        haystack = " ".join([
            diagram.title,
            diagram.description,
            *diagram.insights,
            *(n.label for n in diagram.nodes),
            *(n.insight for n in diagram.nodes),
        ]).lower()
        return sum(1 for term in question.lower().split() if term in haystack)


def select_relevant_diagrams(
    diagrams: list[DiagramPayload],
    question: str,
    scorer: DiagramScorer | None = None,
) -> list[DiagramPayload]:
    """Top 3 diagrams with a positive score, or the first 2 when nothing scores."""
    scorer = scorer or KeywordScorer()
    # sorted() is stable, so ties keep their original order
    ranked = sorted(
        ((d, scorer.score(d, question)) for d in diagrams),
        key=lambda pair: pair[1],
        reverse=True,
    )
    best = [d for d, score in ranked if score > 0][:MAX_RELEVANT]
    return best or diagrams[:FALLBACK_COUNT]


def wants_focus(question: str) -> bool:
    return bool(_FOCUS_RE.search(question))


class AskEngine:
    def __init__(
        self,
        store: CacheStore,
        enricher: Enricher,
        scorer: DiagramScorer | None = None,
    ) -> None:
        self._store = store
        self._enricher = enricher
        self._scorer = scorer or KeywordScorer()

    def ask(self, mapping_id: str, question: str) -> AskResponse:
        """Answer `question` against the mapping's diagrams.

        When the question asks to focus or regenerate, the relevant diagrams are
        also returned re-highlighted for the question text.

        Raises:
            ValidationError: empty question.
            NotFoundError: the mapping id is unknown or expired.
        """
        if not question or not question.strip():
            raise ValidationError("Question is required.")

        context = self._store.get_context(mapping_id)
        if context is None:
            raise NotFoundError("Mapping session not found or expired. Please remap the codebase.")

        relevant = select_relevant_diagrams(context.response.diagrams, question, self._scorer)
        relevant_ids = [d.id for d in relevant]
        logger.info("Ask on %s: relevant diagrams %s", mapping_id, relevant_ids)

        prompt_context = "\n\n".join([
            context.summary_text,
            f"Relevant diagrams: {', '.join(relevant_ids)}",
            json.dumps([d.to_dict() for d in relevant], indent=2),
        ])
        answer, citations, cost = self._enricher.answer(question, prompt_context)
        self._store.record_cost(cost)

        return AskResponse(
            answer=f"{answer}\n\nMost relevant diagrams: {', '.join(relevant_ids)}.",
            citations=citations,
            regenerated_diagrams=[improve_diagram(d, question) for d in relevant]
            if wants_focus(question) else None,
        )
