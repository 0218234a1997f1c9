"""GitHub repository resolution and zipball download."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from codemapper import config
from codemapper.errors import UpstreamUnavailable
from codemapper.ingest.archive import content_hash
from codemapper.ingest.http import fetch_with_timeout

logger = logging.getLogger(__name__)

_GITHUB_URL_RE = re.compile(
    r"github\.com[/:]([^/\s]+)/([^/\s]+)(?:/tree/([^/\s]+))?",
    re.IGNORECASE,
)


@dataclass
class GitHubRef:
    owner: str
    repo: str
    branch: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass
class GitHubArchive:
    data: bytes
    commit_sha: str
    branch: str


def parse_github_url(url: str) -> GitHubRef | None:
    """Parse owner/repo[/tree/branch] out of a GitHub URL. Returns None if it isn't one."""
    normalized = url.strip()
    if normalized.lower().endswith(".git"):
        normalized = normalized[:-4]
    match = _GITHUB_URL_RE.search(normalized)
    if not match:
        return None
    owner, repo, branch = match.groups()
    return GitHubRef(owner=owner, repo=repo, branch=branch)


class GitHubClient:
    """Minimal REST client for the two calls ingestion needs."""

    def __init__(
        self,
        api_url: str | None = None,
        http_client: httpx.Client | None = None,
        metadata_timeout: float | None = None,
        archive_timeout: float | None = None,
    ) -> None:
        self._api_url = (api_url or config.GITHUB_API_URL).rstrip("/")
        self._http = http_client or httpx.Client(follow_redirects=True)
        self._metadata_timeout = metadata_timeout or config.GITHUB_METADATA_TIMEOUT_SECS
        self._archive_timeout = archive_timeout or config.GITHUB_ARCHIVE_TIMEOUT_SECS

    def _headers(self, token: str | None) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": config.USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def resolve_branch(self, ref: GitHubRef, token: str | None = None) -> str:
        """Return the branch embedded in the URL, else the repo's default branch."""
        if ref.branch:
            return ref.branch
        url = f"{self._api_url}/repos/{ref.owner}/{ref.repo}"
        resp = fetch_with_timeout(
            self._http, "GET", url, self._metadata_timeout, headers=self._headers(token),
        )
        if resp.status_code != 200:
            raise UpstreamUnavailable(
                f"Unable to access repository metadata ({resp.status_code}). "
                "Check repo URL/token.",
                status=resp.status_code,
            )
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        return payload.get("default_branch") or "main"

    def fetch_archive(
        self,
        ref: GitHubRef,
        token: str | None = None,
        progress: Callable[[str], None] | None = None,
    ) -> GitHubArchive:
        """Download the branch zipball and compute the content-hash commit surrogate."""
        if progress:
            progress("Resolving repository metadata...")
        branch = self.resolve_branch(ref, token)

        if progress:
            progress(f"Downloading repository snapshot ({branch})...")
        url = f"{self._api_url}/repos/{ref.owner}/{ref.repo}/zipball/{quote(branch, safe='')}"
        resp = fetch_with_timeout(
            self._http, "GET", url, self._archive_timeout, headers=self._headers(token),
        )
        if resp.status_code != 200:
            raise UpstreamUnavailable(
                f"Unable to download repository archive ({resp.status_code}).",
                status=resp.status_code,
            )
        data = resp.content
        logger.info("Downloaded %s@%s (%d bytes)", ref.full_name, branch, len(data))
        return GitHubArchive(data=data, commit_sha=content_hash(data), branch=branch)
