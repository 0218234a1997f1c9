"""Core data models shared across the mapping pipeline.

Everything here round-trips through plain dicts so it can be stored in the
cache document and returned from the API unchanged.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


# ── Repository model (ephemeral, one per mapping request) ──


@dataclass
class SourceFile:
    path: str
    ext: str
    language: str
    size: int
    imports: list[str] = field(default_factory=list)
    snippet: str = ""


@dataclass
class ModuleSummary:
    name: str
    file_count: int
    sample_file: str | None = None


@dataclass
class AgentLink:
    source: str
    target: str
    protocol: str


@dataclass
class RepositoryModel:
    """Structural view of one repository snapshot."""

    repo_name: str
    source: str  # "github" | "upload"
    commit_sha: str
    root_path: str
    files: list[SourceFile] = field(default_factory=list)
    frameworks: list[str] = field(default_factory=list)
    languages: list[str] = field(default_factory=list)
    routes: list[str] = field(default_factory=list)
    api_routes: list[str] = field(default_factory=list)
    top_level_modules: list[ModuleSummary] = field(default_factory=list)
    agent_links: list[AgentLink] = field(default_factory=list)
    deployment_signals: list[str] = field(default_factory=list)
    default_branch: str | None = None

    def file_by_path(self, path: str) -> SourceFile | None:
        for f in self.files:
            if f.path == path:
                return f
        return None


# ── Diagrams ──


@dataclass
class DiagramNode:
    id: str
    label: str
    insight: str = ""
    x: float = 0.0
    y: float = 0.0
    file_path: str | None = None
    snippet: str | None = None
    tags: list[str] = field(default_factory=list)
    style: dict[str, Any] = field(default_factory=dict)
    type: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "insight": self.insight,
            "position": {"x": self.x, "y": self.y},
            "file_path": self.file_path,
            "snippet": self.snippet,
            "tags": list(self.tags),
            "style": dict(self.style),
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> DiagramNode:
        # AI replies sometimes nest label/insight under "data" (React Flow shape)
        inner = data.get("data") if isinstance(data.get("data"), dict) else {}
        position = data.get("position") if isinstance(data.get("position"), dict) else {}
        style = data.get("style") if isinstance(data.get("style"), dict) else {}
        tags = data.get("tags", inner.get("tags"))
        return cls(
            id=str(data.get("id", "")),
            label=str(data.get("label", inner.get("label", "")) or ""),
            insight=str(data.get("insight", inner.get("insight", "")) or ""),
            x=_as_float(position.get("x", data.get("x", 0))),
            y=_as_float(position.get("y", data.get("y", 0))),
            file_path=data.get("file_path", inner.get("filePath")),
            snippet=data.get("snippet", inner.get("snippet")),
            tags=[str(t) for t in tags] if isinstance(tags, list) else [],
            style=dict(style),
            type=data.get("type"),
        )


@dataclass
class DiagramEdge:
    id: str
    source: str
    target: str
    label: str | None = None
    animated: bool = False
    style: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "label": self.label,
            "animated": self.animated,
            "style": dict(self.style),
        }

    @classmethod
    def from_dict(cls, data: dict) -> DiagramEdge:
        style = data.get("style") if isinstance(data.get("style"), dict) else {}
        return cls(
            id=str(data.get("id", "")),
            source=str(data.get("source", "")),
            target=str(data.get("target", "")),
            label=data.get("label"),
            animated=bool(data.get("animated", False)),
            style=dict(style),
        )


@dataclass
class DiagramPayload:
    """One diagram: Mermaid text plus a structured node/edge graph and insights."""

    id: str
    type: str
    title: str
    description: str
    mermaid: str
    nodes: list[DiagramNode] = field(default_factory=list)
    edges: list[DiagramEdge] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "mermaid": self.mermaid,
            "graph": {
                "nodes": [n.to_dict() for n in self.nodes],
                "edges": [e.to_dict() for e in self.edges],
            },
            "insights": list(self.insights),
        }

    @classmethod
    def from_dict(cls, data: dict) -> DiagramPayload:
        graph = data.get("graph")
        if not isinstance(graph, dict):
            graph = data.get("reactFlowData") if isinstance(data.get("reactFlowData"), dict) else {}
        nodes = graph.get("nodes")
        edges = graph.get("edges")
        insights = data.get("insights")
        return cls(
            id=str(data.get("id", "")),
            type=str(data.get("type", "")),
            title=str(data.get("title", "") or ""),
            description=str(data.get("description", "") or ""),
            mermaid=str(data.get("mermaid", "") or ""),
            nodes=[DiagramNode.from_dict(n) for n in nodes if isinstance(n, dict)]
            if isinstance(nodes, list) else [],
            edges=[DiagramEdge.from_dict(e) for e in edges if isinstance(e, dict)]
            if isinstance(edges, list) else [],
            insights=[str(i) for i in insights] if isinstance(insights, list) else [],
        )


# ── Responses ──


@dataclass
class Cost:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    estimated_usd: float = 0.0

    def merge(self, other: Cost) -> Cost:
        return Cost(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            estimated_usd=round(self.estimated_usd + other.estimated_usd, 6),
        )

    def is_zero(self) -> bool:
        return not self.prompt_tokens and not self.completion_tokens and not self.estimated_usd

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Cost:
        return cls(
            prompt_tokens=int(data.get("prompt_tokens", 0)),
            completion_tokens=int(data.get("completion_tokens", 0)),
            estimated_usd=float(data.get("estimated_usd", 0.0)),
        )


@dataclass
class MappingSummary:
    repo_name: str
    commit_sha: str
    source: str
    frameworks: list[str]
    languages: list[str]
    file_count: int
    route_count: int
    agent_count: int
    generated_at: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> MappingSummary:
        return cls(
            repo_name=data["repo_name"],
            commit_sha=data["commit_sha"],
            source=data["source"],
            frameworks=list(data.get("frameworks", [])),
            languages=list(data.get("languages", [])),
            file_count=int(data.get("file_count", 0)),
            route_count=int(data.get("route_count", 0)),
            agent_count=int(data.get("agent_count", 0)),
            generated_at=data.get("generated_at", ""),
        )


@dataclass
class MappingResponse:
    mapping_id: str
    cache_key: str
    cache_hit: bool
    progress_logs: list[str]
    summary: MappingSummary
    diagrams: list[DiagramPayload]
    cost: Cost

    def to_dict(self) -> dict:
        return {
            "mapping_id": self.mapping_id,
            "cache_key": self.cache_key,
            "cache_hit": self.cache_hit,
            "progress_logs": list(self.progress_logs),
            "summary": self.summary.to_dict(),
            "diagrams": [d.to_dict() for d in self.diagrams],
            "cost": self.cost.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> MappingResponse:
        return cls(
            mapping_id=data["mapping_id"],
            cache_key=data["cache_key"],
            cache_hit=bool(data.get("cache_hit", False)),
            progress_logs=list(data.get("progress_logs", [])),
            summary=MappingSummary.from_dict(data["summary"]),
            diagrams=[DiagramPayload.from_dict(d) for d in data.get("diagrams", [])],
            cost=Cost.from_dict(data.get("cost", {})),
        )


@dataclass
class AskResponse:
    answer: str
    citations: list[str] = field(default_factory=list)
    regenerated_diagrams: list[DiagramPayload] | None = None

    def to_dict(self) -> dict:
        return {
            "answer": self.answer,
            "citations": list(self.citations),
            "regenerated_diagrams": [d.to_dict() for d in self.regenerated_diagrams]
            if self.regenerated_diagrams is not None else None,
        }


# ── Requests ──


@dataclass
class MapRequest:
    """Input to a mapping run. Exactly one of repo_url / archive_bytes is used."""

    repo_url: str | None = None
    auth_token: str | None = None
    archive_bytes: bytes | None = None
    archive_name: str | None = None
    focus_areas: list[str] = field(default_factory=list)
    client_id: str | None = None


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
