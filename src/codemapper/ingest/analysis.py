"""Pattern-based code understanding: imports, frameworks, routes, agent links.

All of this is approximate. The CodeAnalyzer protocol is the seam for an
AST-backed replacement; the derived-signal helpers are hints, not ground truth.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Protocol

from codemapper import config
from codemapper.models import AgentLink, ModuleSummary, SourceFile

_JS_IMPORT_RE = re.compile(
    r"""(?:import|export)\s+(?:[^"'`]*?\s+from\s+)?["'`]([^"'`]+)["'`]"""
    r"""|require\(["'`]([^"'`]+)["'`]\)"""
)
_PY_IMPORT_RE = re.compile(
    r"^\s*(?:from\s+([\w.]+)\s+import\b|import\s+([\w.]+))",
    re.MULTILINE,
)
_AGENT_BLOCK_RE = re.compile(r'id:\s*"([^"]+)"[\s\S]*?canMessage:\s*\[([^\]]*)\]')

AGENT_CONFIG_MARKER = "openclaw/config.ts"


class CodeAnalyzer(Protocol):
    """Extracts import targets from one file's text."""

    def imports(self, content: str, ext: str) -> list[str]:
        ...


class RegexAnalyzer:
    """Default analyzer: JS/TS import/require plus Python import statements."""

    def __init__(self, max_imports: int | None = None) -> None:
        self._max_imports = max_imports or config.MAX_IMPORTS_PER_FILE

    def imports(self, content: str, ext: str) -> list[str]:
        found: list[str] = []
        if ext == ".py":
            for m in _PY_IMPORT_RE.finditer(content):
                found.append(m.group(1) or m.group(2))
        else:
            for m in _JS_IMPORT_RE.finditer(content):
                raw = m.group(1) or m.group(2)
                if raw:
                    found.append(raw)
        # dict preserves first-seen order while deduplicating
        return list(dict.fromkeys(found))[: self._max_imports]


def detect_frameworks(files: Sequence[SourceFile]) -> list[str]:
    frameworks: list[str] = []

    def add(name: str) -> None:
        if name not in frameworks:
            frameworks.append(name)

    joined = "\n".join(f.path for f in files).lower()
    if "next.config" in joined or "app/layout.tsx" in joined:
        add("Next.js")
    if "tailwind.config" in joined:
        add("Tailwind CSS")
    if "prisma/schema.prisma" in joined:
        add("Prisma")
    if "dockerfile" in joined:
        add("Docker")
    if "vercel.json" in joined:
        add("Vercel")

    for f in files:
        if f.path == "package.json":
            lower = f.snippet.lower()
            if "react" in lower:
                add("React")
            if "typescript" in lower:
                add("TypeScript")
            if "fastapi" in lower:
                add("FastAPI")
        elif f.path in ("pyproject.toml", "requirements.txt", "setup.py"):
            lower = f.snippet.lower()
            for marker, name in (("fastapi", "FastAPI"), ("flask", "Flask"), ("django", "Django")):
                if marker in lower:
                    add(name)
    return frameworks


def detect_deployment_signals(files: Sequence[SourceFile]) -> list[str]:
    paths = {f.path.lower() for f in files}
    signals: list[str] = []
    if "vercel.json" in paths:
        signals.append("Vercel deployment config")
    if "dockerfile" in paths:
        signals.append("Docker build")
    if "package.json" in paths:
        signals.append("Node build scripts")
    if "pyproject.toml" in paths:
        signals.append("Python packaging")
    if "prisma/schema.prisma" in paths:
        signals.append("Prisma database migrations")
    if any("github/workflows" in p for p in paths):
        signals.append("GitHub Actions")
    return signals


def extract_agent_links(files: Sequence[SourceFile]) -> list[AgentLink]:
    """Read `id: "..." ... canMessage: [...]` blocks from the agent config file.

    Matches against the stored snippet only, so links past the first few
    lines of that file are missed.
    """
    config_file = next((f for f in files if AGENT_CONFIG_MARKER in f.path), None)
    if config_file is None:
        return []
    links: list[AgentLink] = []
    for m in _AGENT_BLOCK_RE.finditer(config_file.snippet):
        source = m.group(1)
        for entry in m.group(2).split(","):
            target = re.sub(r"['\"\s]", "", entry)
            if target:
                links.append(AgentLink(source=source, target=target, protocol="agent-message"))
    return links


def page_routes(files: Sequence[SourceFile]) -> list[str]:
    return [f.path for f in files if f.path.startswith("app/") and f.path.endswith("/page.tsx")]


def api_routes(files: Sequence[SourceFile]) -> list[str]:
    return [f.path for f in files if f.path.startswith("app/api/") and f.path.endswith("route.ts")]


def summarize_modules(files: Sequence[SourceFile]) -> list[ModuleSummary]:
    """Group files by first path segment, in first-seen order."""
    modules: dict[str, ModuleSummary] = {}
    for f in files:
        name = f.path.split("/")[0] if "/" in f.path else "root"
        current = modules.get(name)
        if current is None:
            modules[name] = ModuleSummary(name=name, file_count=1, sample_file=f.path)
        else:
            current.file_count += 1
    return list(modules.values())
