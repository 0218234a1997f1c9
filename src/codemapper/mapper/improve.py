"""Diagram improvement: highlight nodes matching an instruction, without touching the cache."""

from __future__ import annotations

import logging
from dataclasses import replace

from codemapper import config
from codemapper.agent.enricher import Enricher
from codemapper.diagrams.sanitize import sanitize_diagram
from codemapper.errors import NotFoundError
from codemapper.models import DiagramNode, DiagramPayload
from codemapper.storage.cache_store import CacheStore

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTION = "clarity and readability"
FALLBACK_TERM = "critical flow"
REFINED_SUFFIX = " (Refined)"

HIGHLIGHT_BORDER = "1.5px solid #2f9b72"
HIGHLIGHT_SHADOW = "0 0 0 2px rgba(47,155,114,0.24)"
DEFAULT_BORDER = "1px solid #3f4a57"


def _highlight(node: DiagramNode, term: str, needle: str) -> DiagramNode:
    hit = needle in f"{node.label} {node.insight}".lower()
    style = dict(node.style)
    style["border"] = HIGHLIGHT_BORDER if hit else (style.get("border") or DEFAULT_BORDER)
    style["boxShadow"] = HIGHLIGHT_SHADOW if hit else "none"
    return replace(
        node,
        style=style,
        tags=list(node.tags),
        insight=f"{node.insight} Focused for query: {term}." if hit else node.insight,
    )


def improve_diagram(diagram: DiagramPayload, instruction: str) -> DiagramPayload:
    """Return a highlighted copy of `diagram`. The input is never mutated."""
    term = instruction.strip() or FALLBACK_TERM
    needle = term.lower()
    insights = list(dict.fromkeys([f"Refined by mapper with focus: {term}.", *diagram.insights]))
    return replace(
        diagram,
        title=f"{diagram.title}{REFINED_SUFFIX}",
        nodes=[_highlight(n, term, needle) for n in diagram.nodes],
        edges=[replace(e, style=dict(e.style)) for e in diagram.edges],
        insights=insights[: config.MAX_INSIGHTS],
    )


class ImproveEngine:
    """Read-only: recomputes from the pristine cached diagram on every call."""

    def __init__(self, store: CacheStore, enricher: Enricher | None = None) -> None:
        self._store = store
        self._enricher = enricher

    def improve(
        self,
        mapping_id: str,
        diagram_id: str,
        instruction: str | None = None,
    ) -> DiagramPayload:
        context = self._store.get_context(mapping_id)
        if context is None:
            raise NotFoundError("Mapping session not found or expired. Please remap the codebase.")

        diagram = next((d for d in context.response.diagrams if d.id == diagram_id), None)
        if diagram is None:
            raise NotFoundError("Diagram not found in this mapping session.")

        improved = improve_diagram(diagram, instruction or DEFAULT_INSTRUCTION)
        if self._enricher is None or not self._enricher.available:
            return improved

        # The ingested model is gone by now; only the cached summary goes along.
        summary = context.response.summary
        refined, cost = self._enricher.refine_snapshot(
            summary.repo_name,
            summary.commit_sha,
            [improved],
            context.focus_areas,
            context.summary_text,
            mode="critique",
        )
        self._store.record_cost(cost)
        match = next((d for d in refined if d.id == improved.id), None)
        if match is None:
            logger.warning("Critique pass dropped diagram %s, returning heuristic result", diagram_id)
            return improved
        return sanitize_diagram(match)
