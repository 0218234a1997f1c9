"""Resolve a GitHub URL or an uploaded archive into a RepositoryModel."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from codemapper.errors import ValidationError
from codemapper.ingest import analysis
from codemapper.ingest.archive import content_hash, extracted_archive
from codemapper.ingest.github import GitHubClient, parse_github_url
from codemapper.ingest.scanner import TreeScanner
from codemapper.models import MapRequest, RepositoryModel

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_NAME = "uploaded-codebase"


class ArchiveIngestor:
    """Turns a MapRequest into a bounded structural model of the repository."""

    def __init__(
        self,
        github: GitHubClient | None = None,
        scanner: TreeScanner | None = None,
    ) -> None:
        self._github = github or GitHubClient()
        self._scanner = scanner or TreeScanner()

    @contextmanager
    def ingest(
        self,
        request: MapRequest,
        progress: Callable[[str], None] | None = None,
    ) -> Iterator[RepositoryModel]:
        """Yield a RepositoryModel; the extracted tree is deleted when the block exits.

        Raises:
            ValidationError: neither or both of repo_url / archive_bytes given,
                or the URL is not a GitHub repository URL.
            UpstreamUnavailable: metadata or archive fetch failed.
        """
        log = progress or (lambda _msg: None)
        repo_url = (request.repo_url or "").strip()
        has_archive = bool(request.archive_bytes)

        if repo_url and has_archive:
            raise ValidationError("Provide either a GitHub repo URL or a .zip upload, not both.")
        if not repo_url and not has_archive:
            raise ValidationError("Provide either a GitHub repo URL or a .zip upload.")

        default_branch: str | None = None
        if repo_url:
            ref = parse_github_url(repo_url)
            if ref is None:
                raise ValidationError("Only GitHub repository URLs are supported for repo mapping.")
            source = "github"
            repo_name = ref.full_name
            archive = self._github.fetch_archive(ref, token=request.auth_token, progress=log)
            data = archive.data
            commit_sha = archive.commit_sha
            default_branch = archive.branch
        else:
            source = "upload"
            repo_name = (request.archive_name or "").strip() or DEFAULT_UPLOAD_NAME
            data = request.archive_bytes
            commit_sha = content_hash(data)

        log("Preparing temp sandbox...")
        with extracted_archive(data) as (_temp_root, repo_root):
            log("Scanning files and dependency links...")
            t0 = time.perf_counter()
            files = self._scanner.scan(repo_root)
            model = RepositoryModel(
                repo_name=repo_name,
                source=source,
                commit_sha=commit_sha,
                root_path=str(repo_root),
                files=files,
                frameworks=analysis.detect_frameworks(files),
                languages=sorted({f.language for f in files}),
                routes=analysis.page_routes(files),
                api_routes=analysis.api_routes(files),
                top_level_modules=analysis.summarize_modules(files),
                agent_links=analysis.extract_agent_links(files),
                deployment_signals=analysis.detect_deployment_signals(files),
                default_branch=default_branch,
            )
            logger.info(
                "Ingested %s (%s, commit=%s): %d files in %.2fs",
                repo_name, source, commit_sha, len(files), time.perf_counter() - t0,
            )
            log(f"Scanning complete: {len(files)} files analyzed.")
            yield model
