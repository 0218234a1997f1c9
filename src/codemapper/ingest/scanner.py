"""Bounded, deterministic walk of an extracted source tree."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from codemapper import config
from codemapper.ingest.analysis import CodeAnalyzer, RegexAnalyzer
from codemapper.models import SourceFile

logger = logging.getLogger(__name__)

_LANGUAGES: dict[str, str] = {
    ".ts": "TypeScript", ".tsx": "TypeScript",
    ".js": "JavaScript", ".jsx": "JavaScript", ".mjs": "JavaScript", ".cjs": "JavaScript",
    ".py": "Python",
    ".go": "Go",
    ".rs": "Rust",
    ".java": "JVM", ".kt": "JVM",
    ".cs": "C#",
    ".rb": "Ruby",
    ".php": "PHP",
    ".sql": "SQL",
    ".yaml": "Configuration", ".yml": "Configuration", ".toml": "Configuration",
    ".json": "JSON",
    ".sh": "Shell",
    ".md": "Markdown",
    ".Dockerfile": "Docker",
}


def extension_for(name: str) -> str:
    """File extension, with files named `Dockerfile` mapped to `.Dockerfile`."""
    ext = os.path.splitext(name)[1]
    if ext:
        return ext
    if name.lower() == "dockerfile":
        return ".Dockerfile"
    return ""


def language_for_extension(ext: str) -> str:
    return _LANGUAGES.get(ext, "Other")


def build_snippet(content: str) -> str:
    """First few non-blank lines, capped in length."""
    lines = [line for line in content.split("\n") if line.strip()][: config.SNIPPET_LINES]
    return "\n".join(lines)[: config.SNIPPET_CHARS]


class TreeScanner:
    """Collects SourceFile records under a root, honoring the global file cap.

    Directory entries are visited in sorted order so a given tree always
    yields the same file list.
    """

    def __init__(
        self,
        analyzer: CodeAnalyzer | None = None,
        max_files: int | None = None,
        max_file_bytes: int | None = None,
    ) -> None:
        self._analyzer = analyzer or RegexAnalyzer()
        self._max_files = max_files if max_files is not None else config.MAX_ANALYZED_FILES
        self._max_file_bytes = (
            max_file_bytes if max_file_bytes is not None else config.MAX_FILE_BYTES
        )

    def scan(self, root: Path) -> list[SourceFile]:
        files: list[SourceFile] = []
        skipped_large = 0

        def walk(directory: Path) -> None:
            nonlocal skipped_large
            try:
                entries = sorted(os.scandir(directory), key=lambda e: e.name)
            except OSError as e:
                logger.warning("Cannot list %s: %s", directory, e)
                return
            for entry in entries:
                if len(files) >= self._max_files:
                    return
                if entry.is_dir(follow_symlinks=False):
                    if entry.name in config.IGNORE_DIRS:
                        continue
                    walk(Path(entry.path))
                    continue
                if not entry.is_file(follow_symlinks=False):
                    continue

                ext = extension_for(entry.name)
                if ext not in config.SUPPORTED_EXTENSIONS:
                    continue
                size = entry.stat(follow_symlinks=False).st_size
                if size > self._max_file_bytes:
                    skipped_large += 1
                    continue

                path = Path(entry.path)
                content = path.read_text(encoding="utf-8", errors="replace")
                files.append(SourceFile(
                    path=path.relative_to(root).as_posix(),
                    ext=ext,
                    language=language_for_extension(ext),
                    size=size,
                    imports=self._analyzer.imports(content, ext),
                    snippet=build_snippet(content),
                ))

        walk(root)
        if skipped_large:
            logger.debug("Skipped %d file(s) over %d bytes", skipped_large, self._max_file_bytes)
        if len(files) >= self._max_files:
            logger.info("File cap reached (%d); remaining files not analyzed", self._max_files)
        return files
