"""Configuration loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).strip().lower() not in ("false", "0", "no", "off")


# Paths
DATA_DIR: Path = Path(os.getenv("DATA_DIR", "./data"))
CACHE_PATH: Path = Path(
    os.getenv("CODEMAPPER_CACHE_PATH", str(DATA_DIR / "codemapper-cache.json"))
)
CACHE_BACKEND: str = os.getenv("CODEMAPPER_CACHE_BACKEND", "json").lower()
SQLITE_PATH: Path = DATA_DIR / "codemapper.db"

# Cache
CACHE_TTL_SECS: int = int(os.getenv("CODEMAPPER_CACHE_TTL_SECS", str(60 * 60 * 24)))

# Ingestion bounds
MAX_FILE_BYTES: int = 300_000
MAX_ANALYZED_FILES: int = 700
MAX_IMPORTS_PER_FILE: int = 20
SNIPPET_LINES: int = 8
SNIPPET_CHARS: int = 400

# API keys
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")

# Models
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-3-flash-preview")
AI_TIMEOUT_SECS: float = float(os.getenv("CODEMAPPER_AI_TIMEOUT_SECS", "60"))
SELF_CRITIQUE: bool = _flag("CODEMAPPER_SELF_CRITIQUE")

# Pricing, USD per million tokens
INPUT_USD_PER_M: float = float(os.getenv("CODEMAPPER_INPUT_USD_PER_M", "0.30"))
OUTPUT_USD_PER_M: float = float(os.getenv("CODEMAPPER_OUTPUT_USD_PER_M", "2.50"))

# Source hosting
GITHUB_API_URL: str = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/")
GITHUB_METADATA_TIMEOUT_SECS: float = 12.0
GITHUB_ARCHIVE_TIMEOUT_SECS: float = 20.0
USER_AGENT: str = "codemapper"

# Rate limits: action -> (limit, window_ms)
RATE_WINDOW_MS: int = 15 * 60 * 1000
RATE_LIMITS: dict[str, tuple[int, int]] = {
    "map": (8, RATE_WINDOW_MS),
    "ask": (30, RATE_WINDOW_MS),
    "improve": (20, RATE_WINDOW_MS),
}

# Server
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Fixed tables

FOCUS_AREAS: dict[str, str] = {
    "agent_interactions": "How agents/services collaborate and hand off work.",
    "communication_protocols": "HTTP, events, pub/sub, webhooks, and queue paths.",
    "deployment_pipeline": "CI/CD flow, environments, runtime and infrastructure path.",
    "data_flow": "Request, storage, and derived data movement paths.",
    "security_privacy": "Auth boundaries, secrets, PII handling, and exposure risks.",
    "performance_bottlenecks": "Hot paths and likely latency/throughput bottlenecks.",
}
MAX_FOCUS_AREAS: int = 6

DIAGRAM_KINDS: tuple[str, ...] = (
    "architecture",
    "agent_interaction",
    "communication_flow",
    "deployment_pipeline",
    "file_dependency",
    "data_flow",
    "call_graph_hotspots",
    "security_posture",
)
MAX_INSIGHTS: int = 8

SUPPORTED_EXTENSIONS: frozenset[str] = frozenset({
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs",
    ".py", ".go", ".rs", ".java", ".kt", ".cs", ".rb", ".php",
    ".sql", ".json", ".yaml", ".yml", ".toml", ".md", ".sh",
    ".Dockerfile",
})

IGNORE_DIRS: frozenset[str] = frozenset({
    ".git", ".next", "node_modules", "dist", "build", "coverage",
    "tmp", "temp", ".turbo", ".vercel",
    "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache",
})

MAPPER_SYSTEM_PROMPT = (
    "You are a senior software architect. Given a compact summary of a codebase "
    "and a set of draft diagrams, produce clean, production-grade diagrams that a "
    "senior engineer would present to the team. Prioritize clarity over "
    "completeness. Use standard shapes. Add concise insights on every major node. "
    "Always answer with strict JSON."
)
