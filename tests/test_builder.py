"""Tests for heuristic diagram construction and sanitization."""

from __future__ import annotations

import pytest

from codemapper import config
from codemapper.diagrams.builder import build_heuristic_diagrams, mermaid_from_graph, resolve_import
from codemapper.diagrams.sanitize import PLACEHOLDER_MERMAID, coerce_diagram, sanitize_diagram
from codemapper.ingest.analysis import summarize_modules
from codemapper.models import AgentLink, DiagramEdge, DiagramNode, RepositoryModel, SourceFile
from tests.helpers import make_diagram


def _file(path: str, imports: list[str] | None = None) -> SourceFile:
    ext = "." + path.rsplit(".", 1)[-1]
    return SourceFile(path=path, ext=ext, language="TypeScript", size=10,
                      imports=imports or [], snippet=f"// {path}")


@pytest.fixture
def model():
    files = [
        _file("app/api/payments/route.ts", ["../../../lib/payments"]),
        _file("app/page.tsx", ["@/components/header"]),
        _file("components/header.tsx", ["react"]),
        _file("lib/payments.ts", ["stripe"]),
    ]
    return RepositoryModel(
        repo_name="acme/app",
        source="github",
        commit_sha="abc1234567",
        root_path="/tmp/x",
        files=files,
        languages=["TypeScript"],
        routes=["app/page.tsx"],
        api_routes=["app/api/payments/route.ts"],
        top_level_modules=summarize_modules(files),
        deployment_signals=["Docker build"],
    )


class TestBuildHeuristicDiagrams:
    def test_one_per_kind(self, model):
        diagrams = build_heuristic_diagrams(model, [])
        assert [d.type for d in diagrams] == list(config.DIAGRAM_KINDS)
        assert len({d.id for d in diagrams}) == 8

    def test_focus_kinds_first(self, model):
        diagrams = build_heuristic_diagrams(model, ["security_privacy", "data_flow"])
        assert [d.type for d in diagrams[:2]] == ["security_posture", "data_flow"]
        assert len(diagrams) == 8

    def test_every_diagram_is_sane(self, model):
        for d in build_heuristic_diagrams(model, []):
            assert d.mermaid.startswith("flowchart")
            assert len(d.insights) <= config.MAX_INSIGHTS
            node_ids = {n.id for n in d.nodes}
            for e in d.edges:
                assert e.source in node_ids and e.target in node_ids

    def test_module_edges_from_imports(self, model):
        arch = build_heuristic_diagrams(model, [])[0]
        pairs = {(e.source, e.target) for e in arch.edges}
        assert ("mod-app", "mod-lib") in pairs
        assert ("mod-app", "mod-components") in pairs

    def test_agent_links(self, model):
        model.agent_links = [AgentLink("planner", "coder", "agent-message")]
        agent = next(d for d in build_heuristic_diagrams(model, []) if d.type == "agent_interaction")
        assert {n.label for n in agent.nodes} == {"planner", "coder"}
        assert agent.edges[0].label == "agent-message"

    def test_colliding_paths_get_distinct_ids(self):
        files = [_file("lib/a/b.ts"), _file("lib/a-b.ts"), _file("lib/main.ts", ["./a-b", "./a/b"])]
        model = RepositoryModel(repo_name="x", source="upload", commit_sha="0", root_path="/tmp",
                                files=files, top_level_modules=summarize_modules(files))
        for kind in ("file_dependency", "call_graph_hotspots"):
            diagram = next(d for d in build_heuristic_diagrams(model, []) if d.type == kind)
            ids = [n.id for n in diagram.nodes]
            assert len(ids) == len(set(ids)) == 3
            targets = {e.target for e in diagram.edges}
            by_path = {n.file_path: n.id for n in diagram.nodes}
            assert targets == {by_path["lib/a/b.ts"], by_path["lib/a-b.ts"]}

    def test_empty_model(self):
        empty = RepositoryModel(repo_name="x", source="upload", commit_sha="0", root_path="/tmp")
        diagrams = build_heuristic_diagrams(empty, [])
        assert len(diagrams) == 8


class TestResolveImport:
    def test_relative_js(self, model):
        from codemapper.diagrams.builder import _path_index
        index = _path_index(model.files)
        assert resolve_import(model.files[0], "../../../lib/payments", index) == "lib/payments.ts"

    def test_python_module(self):
        from codemapper.diagrams.builder import _path_index
        files = [_file("pkg/models.py"), _file("pkg/api/__init__.py"), _file("pkg/app.py")]
        index = _path_index(files)
        assert resolve_import(files[2], "pkg.models", index) == "pkg/models.py"
        assert resolve_import(files[2], ".models", index) == "pkg/models.py"
        assert resolve_import(files[2], "pkg.api", index) == "pkg/api/__init__.py"

    def test_external_package(self, model):
        from codemapper.diagrams.builder import _path_index
        assert resolve_import(model.files[3], "stripe", _path_index(model.files)) is None


class TestMermaid:
    def test_quotes_escaped(self):
        text = mermaid_from_graph(
            [DiagramNode(id="a", label='say "hi"'), DiagramNode(id="b", label="b")],
            [DiagramEdge(id="e", source="a", target="b", label="x|y")],
        )
        assert "a[\"say 'hi'\"]" in text
        assert "a -->|x/y| b" in text


class TestSanitize:
    def test_placeholder_and_caps(self):
        raw = make_diagram(insights=[f"i{n}" for n in range(12)])
        raw.mermaid = "   "
        clean = sanitize_diagram(raw)
        assert clean.mermaid == PLACEHOLDER_MERMAID
        assert len(clean.insights) == 8

    def test_idempotent(self):
        raw = make_diagram(insights=[f"i{n}" for n in range(12)])
        raw.mermaid = ""
        once = sanitize_diagram(raw)
        assert sanitize_diagram(once) == once

    def test_does_not_mutate_input(self):
        raw = make_diagram(insights=[f"i{n}" for n in range(12)])
        sanitize_diagram(raw)
        assert len(raw.insights) == 12

    def test_coerce_legacy_shape(self):
        raw = {
            "id": "architecture",
            "type": "architecture",
            "title": "Arch",
            "reactFlowData": {
                "nodes": [{"id": "n1", "data": {"label": "API", "insight": "entry", "filePath": "app/api.ts"},
                           "position": {"x": 10, "y": 20}}],
            },
        }
        diagram = coerce_diagram(raw)
        assert diagram.mermaid == PLACEHOLDER_MERMAID
        assert diagram.edges == []
        node = diagram.nodes[0]
        assert (node.label, node.insight, node.file_path, node.x, node.y) == ("API", "entry", "app/api.ts", 10.0, 20.0)

    def test_coerce_non_dict(self):
        assert coerce_diagram(["not", "a", "diagram"]) is None
