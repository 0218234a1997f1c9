"""Heuristic (seed) diagrams built from a RepositoryModel by static analysis alone.

`build_heuristic_diagrams` always returns one diagram per kind in
config.DIAGRAM_KINDS. Kinds tied to a requested focus area come first.
"""

from __future__ import annotations

import hashlib
import posixpath
import re
from collections.abc import Callable, Sequence

from codemapper import config
from codemapper.models import DiagramEdge, DiagramNode, DiagramPayload, RepositoryModel, SourceFile

_STYLES: dict[str, dict[str, str]] = {
    "core": {"background": "#1b1f25", "border": "1px solid #3f4a57", "color": "#f0f6ff"},
    "service": {"background": "#162520", "border": "1px solid #2b7d66", "color": "#d2fff0"},
    "data": {"background": "#1d1f2d", "border": "1px solid #4f5fbd", "color": "#e4e9ff"},
    "external": {"background": "#2a1f17", "border": "1px solid #a0623a", "color": "#ffe8d8"},
}

_TITLES: dict[str, tuple[str, str]] = {
    "architecture": (
        "High-level Architecture",
        "Core component hierarchy and cross-module boundaries.",
    ),
    "agent_interaction": (
        "Agent Interaction Graph",
        "Directed communication between agents/services with protocol hints.",
    ),
    "communication_flow": (
        "Communication Flowchart",
        "API, event, and async communication flow across major paths.",
    ),
    "deployment_pipeline": (
        "Deployment Pipeline",
        "Build, test, deploy, and runtime environment flow.",
    ),
    "file_dependency": (
        "File & Dependency Graph",
        "File import/dependency graph ranked by fan-out.",
    ),
    "data_flow": (
        "Data Flow",
        "How data moves between request surfaces, services, and storage.",
    ),
    "call_graph_hotspots": (
        "Call Graph Hotspots",
        "Likely high-churn and high-fanout call graph hotspots.",
    ),
    "security_posture": (
        "Security Posture Map",
        "Trust boundaries, auth surfaces, and sensitive-data touch points.",
    ),
}

FOCUS_TO_KIND: dict[str, str] = {
    "agent_interactions": "agent_interaction",
    "communication_protocols": "communication_flow",
    "deployment_pipeline": "deployment_pipeline",
    "data_flow": "data_flow",
    "security_privacy": "security_posture",
    "performance_bottlenecks": "call_graph_hotspots",
}

_SOURCE_EXTS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".py")


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "-", text, flags=re.IGNORECASE)


def _layout(
    items: Sequence[dict],
    columns: int = 4,
    x_gap: int = 280,
    y_gap: int = 170,
) -> list[DiagramNode]:
    nodes = []
    for i, item in enumerate(items):
        nodes.append(DiagramNode(
            id=item["id"],
            label=item["label"],
            insight=item.get("insight", ""),
            x=float((i % columns) * x_gap),
            y=float((i // columns) * y_gap),
            file_path=item.get("file_path"),
            snippet=item.get("snippet"),
            style=dict(_STYLES[item.get("kind", "core")]),
        ))
    return nodes


def _edges(pairs: Sequence[tuple[str, str, str | None]]) -> list[DiagramEdge]:
    return [
        DiagramEdge(
            id=f"e-{i}-{source}-{target}",
            source=source,
            target=target,
            label=label,
            style={"stroke": "#8aa3bd", "strokeWidth": 1.3},
        )
        for i, (source, target, label) in enumerate(pairs)
    ]


def mermaid_from_graph(nodes: Sequence[DiagramNode], edges: Sequence[DiagramEdge], direction: str = "LR") -> str:
    lines = [f"flowchart {direction}"]
    for node in nodes:
        label = node.label.replace('"', "'")
        lines.append(f'  {node.id}["{label}"]')
    for edge in edges:
        label = f"|{edge.label.replace('|', '/')}|" if edge.label else ""
        lines.append(f"  {edge.source} -->{label} {edge.target}")
    return "\n".join(lines)


def _payload(
    kind: str,
    nodes: list[DiagramNode],
    edges: list[DiagramEdge],
    insights: list[str],
    direction: str = "LR",
) -> DiagramPayload:
    title, description = _TITLES[kind]
    return DiagramPayload(
        id=kind.replace("_", "-"),
        type=kind,
        title=title,
        description=description,
        mermaid=mermaid_from_graph(nodes, edges, direction),
        nodes=nodes,
        edges=edges,
        insights=insights[: config.MAX_INSIGHTS],
    )


# ── Import resolution ──


def _strip_ext(path: str) -> str:
    root, ext = posixpath.splitext(path)
    return root if ext in _SOURCE_EXTS else path


def _path_index(files: Sequence[SourceFile]) -> dict[str, str]:
    """Map import-able spellings of each file (no extension, package dir) to its path."""
    index: dict[str, str] = {}
    for f in files:
        bare = _strip_ext(f.path)
        index.setdefault(bare, f.path)
        for suffix in ("/index", "/__init__"):
            if bare.endswith(suffix):
                index.setdefault(bare[: -len(suffix)], f.path)
    return index


def resolve_import(importer: SourceFile, target: str, index: dict[str, str]) -> str | None:
    """Best-effort resolution of one import string to a path inside the repo."""
    if target.startswith("."):
        if importer.ext == ".py":
            dots = len(target) - len(target.lstrip("."))
            base = posixpath.dirname(importer.path)
            for _ in range(dots - 1):
                base = posixpath.dirname(base)
            rest = target.lstrip(".").replace(".", "/")
            candidate = posixpath.join(base, rest) if rest else base
        else:
            candidate = posixpath.normpath(posixpath.join(posixpath.dirname(importer.path), target))
    elif target.startswith("@/"):
        candidate = target[2:]
    elif importer.ext == ".py":
        candidate = target.replace(".", "/")
    else:
        return None
    candidate = _strip_ext(candidate)
    hit = index.get(candidate)
    if hit is None and importer.ext == ".py" and "/" in candidate:
        # `from pkg.mod import name` may name a symbol, not a module
        hit = index.get(posixpath.dirname(candidate))
    if hit is None:
        # src/ layouts import without the src/ prefix
        hit = index.get(f"src/{candidate}")
    return hit


# ── Diagram kinds ──


def architecture_diagram(model: RepositoryModel) -> DiagramPayload:
    modules = model.top_level_modules[:24]
    nodes = _layout([
        {
            "id": f"mod-{_slug(m.name)}",
            "label": f"{m.name} ({m.file_count})",
            "insight": f"{m.file_count} files mapped in this module.",
            "file_path": m.sample_file,
            "snippet": model.file_by_path(m.sample_file).snippet
            if m.sample_file and model.file_by_path(m.sample_file) else None,
        }
        for m in modules
    ])
    known = {n.id for n in nodes}
    index = _path_index(model.files)

    def module_of(path: str) -> str:
        return path.split("/")[0] if "/" in path else "root"

    pairs: list[tuple[str, str, str | None]] = []
    seen: set[tuple[str, str]] = set()
    for f in model.files:
        for imp in f.imports:
            resolved = resolve_import(f, imp, index)
            if resolved is None:
                continue
            src = f"mod-{_slug(module_of(f.path))}"
            dst = f"mod-{_slug(module_of(resolved))}"
            if src == dst or src not in known or dst not in known or (src, dst) in seen:
                continue
            seen.add((src, dst))
            pairs.append((src, dst, None))
    edges = _edges(pairs[:80])

    return _payload("architecture", nodes, edges, [
        f"{len(model.top_level_modules)} top-level modules detected.",
        f"{len(model.files)} source/config files contributed to this map.",
        "Use node drill-down to inspect representative snippets by module.",
    ])


def agent_diagram(model: RepositoryModel) -> DiagramPayload:
    agents = list(dict.fromkeys(a for link in model.agent_links for a in (link.source, link.target)))
    if agents:
        config_file = next(
            (f for f in model.files if "openclaw/config.ts" in f.path), None,
        )
        nodes = _layout([
            {
                "id": f"agent-{_slug(a)}",
                "label": a,
                "insight": "Agent role in the orchestration graph.",
                "kind": "service",
                "file_path": config_file.path if config_file else None,
                "snippet": config_file.snippet if config_file else None,
            }
            for a in agents
        ], columns=5, x_gap=240, y_gap=140)
        edges = _edges([
            (f"agent-{_slug(link.source)}", f"agent-{_slug(link.target)}", link.protocol)
            for link in model.agent_links
        ])
        insights = [
            f"{len(agents)} agents/services represented.",
            "Edge labels describe protocol or handoff semantics.",
            "Look for high out-degree nodes to find orchestration bottlenecks.",
        ]
    else:
        # No declared agents: show the top modules as collaborating services
        services = model.top_level_modules[:5] or []
        nodes = _layout([
            {
                "id": f"agent-{_slug(m.name)}",
                "label": m.name,
                "insight": "Module acting as a service boundary (no agent config detected).",
                "kind": "service",
                "file_path": m.sample_file,
            }
            for m in services
        ], columns=5, x_gap=240, y_gap=140)
        edges = _edges([
            (nodes[0].id, n.id, "calls") for n in nodes[1:]
        ])
        insights = [
            "No declarative agent configuration found; modules shown as services.",
            "Edge labels describe protocol or handoff semantics.",
        ]
    return _payload("agent_interaction", nodes, edges, insights)


def communication_diagram(model: RepositoryModel) -> DiagramPayload:
    nodes = _layout([
        {"id": "comm-client", "label": "Client", "kind": "external",
         "insight": "Requests originate from UI pages, CLIs, or other services."},
        {"id": "comm-api", "label": f"API Routes ({len(model.api_routes)})", "kind": "service",
         "insight": "Server routes coordinate parsing, orchestration, and validation."},
        {"id": "comm-core", "label": "Core Services", "kind": "core",
         "insight": "Domain logic behind the request surface."},
        {"id": "comm-external", "label": "External APIs", "kind": "external",
         "insight": "Third-party integrations reached over HTTP."},
        {"id": "comm-store", "label": "Persistence", "kind": "data",
         "insight": "Databases, caches, and files the services read and write."},
    ], columns=3, x_gap=300)
    edges = _edges([
        ("comm-client", "comm-api", "HTTP"),
        ("comm-api", "comm-core", "orchestration"),
        ("comm-core", "comm-external", "REST / events"),
        ("comm-core", "comm-store", "read/write"),
        ("comm-core", "comm-api", "response payload"),
        ("comm-api", "comm-client", "JSON"),
    ])
    return _payload("communication_flow", nodes, edges, [
        "Communication flow highlights request/response plus external API hops.",
        "Use this graph to audit timeouts, retries, and error propagation paths.",
    ], direction="TD")


def deployment_diagram(model: RepositoryModel) -> DiagramPayload:
    runtime = "Runtime"
    if "Vercel deployment config" in model.deployment_signals:
        runtime = "Runtime (Vercel)"
    elif "Docker build" in model.deployment_signals:
        runtime = "Runtime (container)"
    ci_insight = (
        "GitHub Actions workflows run checks and builds."
        if "GitHub Actions" in model.deployment_signals
        else "Runs install, lint, tests, and production build."
    )
    nodes = _layout([
        {"id": "dep-source", "label": "Source Repo", "kind": "external",
         "insight": "Source of truth for application code and infrastructure config."},
        {"id": "dep-ci", "label": "CI Build", "kind": "service", "insight": ci_insight},
        {"id": "dep-artifact", "label": "Build Artifacts", "kind": "data",
         "insight": "Packaged output ready for deployment."},
        {"id": "dep-runtime", "label": runtime, "kind": "service",
         "insight": "Serves the application and its API endpoints."},
        {"id": "dep-observe", "label": "Observability", "kind": "core",
         "insight": "Health checks, logs, and cost telemetry."},
    ], columns=5, x_gap=240)
    edges = _edges([
        ("dep-source", "dep-ci", "push / merge"),
        ("dep-ci", "dep-artifact", "build"),
        ("dep-artifact", "dep-runtime", "deploy"),
        ("dep-runtime", "dep-observe", "metrics + logs"),
        ("dep-observe", "dep-source", "feedback loop"),
    ])
    signal_note = (
        f"Signals: {'; '.join(model.deployment_signals)}"
        if model.deployment_signals
        else "Signals inferred from scripts and runtime conventions."
    )
    return _payload("deployment_pipeline", nodes, edges, [
        signal_note,
        "Pipeline stages are inferred; verify against the actual CI configuration.",
    ])


def _file_node_id(prefix: str, path: str) -> str:
    # Slugging is lossy, so the path digest keeps ids unique.
    digest = hashlib.sha1(path.encode("utf-8")).hexdigest()[:8]
    return f"{prefix}-{_slug(path)}-{digest}"


def dependency_diagram(model: RepositoryModel) -> DiagramPayload:
    ranked = sorted(model.files, key=lambda f: len(f.imports), reverse=True)[:40]
    nodes = _layout([
        {
            "id": _file_node_id("file", f.path),
            "label": f.path,
            "insight": f"{len(f.imports)} direct import references detected.",
            "file_path": f.path,
            "snippet": f.snippet,
            "kind": "service" if f.path in model.api_routes else "core",
        }
        for f in ranked
    ], columns=5, x_gap=280, y_gap=160)
    known = {n.id for n in nodes}
    index = _path_index(model.files)
    pairs = []
    for f in ranked:
        for imp in f.imports:
            resolved = resolve_import(f, imp, index)
            if resolved is None:
                continue
            src, dst = _file_node_id("file", f.path), _file_node_id("file", resolved)
            if src != dst and dst in known:
                pairs.append((src, dst, "import"))
    edges = _edges(pairs[:120])
    return _payload("file_dependency", nodes, edges, [
        "Use search to isolate files and identify fan-in / fan-out hotspots.",
        "High-degree nodes are good candidates for optimization and modularization.",
    ])


def data_flow_diagram(model: RepositoryModel) -> DiagramPayload:
    store_hint = "Prisma database" if "Prisma" in model.frameworks else "Databases and caches"
    nodes = _layout([
        {"id": "data-input", "label": "Input Surfaces", "kind": "external",
         "insight": "Forms, API calls, and uploads entering the system."},
        {"id": "data-api", "label": "Validation + API", "kind": "service",
         "insight": "Normalizes and validates incoming payloads."},
        {"id": "data-domain", "label": "Domain Logic", "kind": "core",
         "insight": "Business rules transforming validated data."},
        {"id": "data-store", "label": "Datastores", "kind": "data",
         "insight": f"{store_hint} holding persisted state."},
    ], columns=4, x_gap=280)
    edges = _edges([
        ("data-input", "data-api", "request"),
        ("data-api", "data-domain", "validated payload"),
        ("data-domain", "data-store", "persist"),
        ("data-store", "data-domain", "hydrate"),
        ("data-domain", "data-api", "response model"),
    ])
    return _payload("data_flow", nodes, edges, [
        f"{len(model.routes)} route views and {len(model.api_routes)} API routes influence this path.",
    ])


def hotspot_diagram(model: RepositoryModel) -> DiagramPayload:
    def score(f: SourceFile) -> int:
        return len(f.imports) + (6 if f.path in model.api_routes else 0) + (3 if "lib/" in f.path else 0)

    hotspots = sorted(model.files, key=score, reverse=True)[:18]
    nodes = _layout([
        {
            "id": _file_node_id("hot", f.path),
            "label": f.path,
            "insight": f"Composite hotspot score: {score(f)}.",
            "file_path": f.path,
            "snippet": f.snippet,
        }
        for f in hotspots
    ], columns=3, x_gap=320, y_gap=150)
    known = {n.id for n in nodes}
    index = _path_index(model.files)
    pairs = []
    for f in hotspots:
        for imp in f.imports[:4]:
            resolved = resolve_import(f, imp, index)
            if resolved is None:
                continue
            dst = _file_node_id("hot", resolved)
            if dst in known and dst != _file_node_id("hot", f.path):
                pairs.append((_file_node_id("hot", f.path), dst, "calls"))
    edges = _edges(pairs[:50])
    return _payload("call_graph_hotspots", nodes, edges, [
        "Hotspot score blends import fanout and API criticality.",
        "Target these nodes first for profiling and architectural decomposition.",
    ], direction="TD")


def security_diagram(model: RepositoryModel) -> DiagramPayload:
    nodes = _layout([
        {"id": "sec-client", "label": "Client Boundary", "kind": "external",
         "insight": "Untrusted user input boundary."},
        {"id": "sec-auth", "label": "Authentication", "kind": "service",
         "insight": "Identity context for sensitive actions."},
        {"id": "sec-api", "label": "Protected API Surface", "kind": "service",
         "insight": "Input validation and rate limiting controls."},
        {"id": "sec-secrets", "label": "Secrets + External APIs", "kind": "data",
         "insight": "API keys/tokens and outbound integrations."},
        {"id": "sec-audit", "label": "Audit Trail", "kind": "data",
         "insight": "Logs and records of privileged operations."},
    ], columns=5, x_gap=260)
    edges = _edges([
        ("sec-client", "sec-auth", "identity"),
        ("sec-auth", "sec-api", "authorized call"),
        ("sec-api", "sec-secrets", "signed outbound"),
        ("sec-api", "sec-audit", "audit event"),
    ])
    return _payload("security_posture", nodes, edges, [
        "Review outbound integration nodes for least-privilege secrets handling.",
        f"Model source includes {len(model.api_routes)} API routes requiring boundary checks.",
    ])


_BUILDERS: dict[str, Callable[[RepositoryModel], DiagramPayload]] = {
    "architecture": architecture_diagram,
    "agent_interaction": agent_diagram,
    "communication_flow": communication_diagram,
    "deployment_pipeline": deployment_diagram,
    "file_dependency": dependency_diagram,
    "data_flow": data_flow_diagram,
    "call_graph_hotspots": hotspot_diagram,
    "security_posture": security_diagram,
}


def build_heuristic_diagrams(model: RepositoryModel, focus_areas: Sequence[str]) -> list[DiagramPayload]:
    """One seed diagram per kind; kinds matching a focus area are ordered first."""
    focused = [FOCUS_TO_KIND[a] for a in focus_areas if a in FOCUS_TO_KIND]
    order = list(dict.fromkeys(focused + list(config.DIAGRAM_KINDS)))
    return [_BUILDERS[kind](model) for kind in order]
