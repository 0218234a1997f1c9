"""Normalization applied to every diagram that survives an enrichment pass."""

from __future__ import annotations

from dataclasses import replace

from codemapper import config
from codemapper.models import DiagramPayload

PLACEHOLDER_MERMAID = "flowchart LR\n  A[Unavailable] --> B[Mapper returned incomplete data]"


def sanitize_diagram(diagram: DiagramPayload) -> DiagramPayload:
    """Non-empty mermaid, at most MAX_INSIGHTS insights, nodes/edges always lists.

    Idempotent: sanitizing a sanitized diagram returns an equal diagram.
    """
    return replace(
        diagram,
        mermaid=diagram.mermaid if diagram.mermaid and diagram.mermaid.strip() else PLACEHOLDER_MERMAID,
        insights=list(diagram.insights or [])[: config.MAX_INSIGHTS],
        nodes=list(diagram.nodes or []),
        edges=list(diagram.edges or []),
    )


def coerce_diagram(raw: object) -> DiagramPayload | None:
    """Parse one AI-returned diagram dict tolerantly; None if it is not a dict."""
    if not isinstance(raw, dict):
        return None
    return sanitize_diagram(DiagramPayload.from_dict(raw))
