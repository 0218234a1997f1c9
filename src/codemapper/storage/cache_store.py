"""Content-addressed cache of mapping results, contexts, rate buckets and AI cost.

Document layout:

    {
      "entries":     [CacheEntry, ...],       one per cache key
      "contexts":    [CachedContext, ...],    one per mapping id
      "rate_limits": {"action:client": {"started_at_ms": int, "count": int}},
      "cost_ledger": {"total": {...}, "by_date": {"YYYY-MM-DD": {...}}}
    }

Every read prunes first. A context lives exactly as long as the entry with
the same mapping id.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from codemapper import config
from codemapper.models import Cost, MappingResponse
from codemapper.storage.backend import DocumentBackend

logger = logging.getLogger(__name__)


def build_cache_key(commit_sha: str, repo_name: str, focus_areas: Iterable[str]) -> str:
    """SHA-256 over the normalized (commit, lower-cased repo name, sorted focus areas)."""
    normalized = json.dumps(
        {
            "commit_sha": commit_sha,
            "repo_name": repo_name.lower(),
            "focus_areas": sorted(focus_areas),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    cache_key: str
    mapping_id: str
    created_at: float
    commit_sha: str
    repo_name: str
    focus_areas: list[str]
    response: MappingResponse

    def to_dict(self) -> dict:
        return {
            "cache_key": self.cache_key,
            "mapping_id": self.mapping_id,
            "created_at": self.created_at,
            "commit_sha": self.commit_sha,
            "repo_name": self.repo_name,
            "focus_areas": list(self.focus_areas),
            "response": self.response.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> CacheEntry:
        return cls(
            cache_key=data["cache_key"],
            mapping_id=data["mapping_id"],
            created_at=float(data["created_at"]),
            commit_sha=data.get("commit_sha", ""),
            repo_name=data.get("repo_name", ""),
            focus_areas=list(data.get("focus_areas", [])),
            response=MappingResponse.from_dict(data["response"]),
        )


@dataclass
class CachedContext:
    """Everything Ask/Improve need for one mapping, without re-ingesting."""

    mapping_id: str
    created_at: float
    summary_text: str
    focus_areas: list[str]
    response: MappingResponse

    def to_dict(self) -> dict:
        return {
            "mapping_id": self.mapping_id,
            "created_at": self.created_at,
            "summary_text": self.summary_text,
            "focus_areas": list(self.focus_areas),
            "response": self.response.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> CachedContext:
        return cls(
            mapping_id=data["mapping_id"],
            created_at=float(data["created_at"]),
            summary_text=data.get("summary_text", ""),
            focus_areas=list(data.get("focus_areas", [])),
            response=MappingResponse.from_dict(data["response"]),
        )


@dataclass
class RateBucket:
    started_at_ms: int
    count: int


@dataclass
class _Document:
    entries: list[dict] = field(default_factory=list)
    contexts: list[dict] = field(default_factory=list)
    rate_limits: dict[str, dict] = field(default_factory=dict)
    cost_ledger: dict = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: dict) -> _Document:
        def typed(key: str, kind: type, default):
            value = raw.get(key)
            return value if isinstance(value, kind) else default

        ledger = typed("cost_ledger", dict, {})
        if not isinstance(ledger.get("total"), dict):
            ledger["total"] = _empty_bucket(with_requests=False)
        if not isinstance(ledger.get("by_date"), dict):
            ledger["by_date"] = {}
        return cls(
            entries=[e for e in typed("entries", list, []) if isinstance(e, dict)],
            contexts=[c for c in typed("contexts", list, []) if isinstance(c, dict)],
            rate_limits=typed("rate_limits", dict, {}),
            cost_ledger=ledger,
        )

    def to_raw(self) -> dict:
        return {
            "entries": self.entries,
            "contexts": self.contexts,
            "rate_limits": self.rate_limits,
            "cost_ledger": self.cost_ledger,
        }


def _empty_bucket(with_requests: bool = True) -> dict:
    bucket = {"prompt_tokens": 0, "completion_tokens": 0, "estimated_usd": 0.0}
    if with_requests:
        bucket = {"requests": 0, **bucket}
    return bucket


class CacheStore:
    """Cache operations over a DocumentBackend."""

    def __init__(
        self,
        backend: DocumentBackend,
        ttl_secs: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._ttl = ttl_secs if ttl_secs is not None else config.CACHE_TTL_SECS
        self._clock = clock

    @property
    def ttl_secs(self) -> float:
        return self._ttl

    # ── Internal ──

    def _load(self) -> _Document:
        return _Document.from_raw(self._backend.load())

    def _save(self, doc: _Document) -> None:
        self._backend.save(doc.to_raw())

    def _prune_doc(self, doc: _Document) -> int:
        """Drop expired entries and any context not backed by a live entry."""
        now = self._clock()

        def live(record: dict) -> bool:
            try:
                return now - float(record.get("created_at", 0)) <= self._ttl
            except (TypeError, ValueError):
                return False

        before = len(doc.entries) + len(doc.contexts)
        doc.entries = [e for e in doc.entries if live(e)]
        live_ids = {e.get("mapping_id") for e in doc.entries}
        doc.contexts = [
            c for c in doc.contexts if c.get("mapping_id") in live_ids and live(c)
        ]
        return before - (len(doc.entries) + len(doc.contexts))

    def _load_pruned(self) -> _Document:
        doc = self._load()
        removed = self._prune_doc(doc)
        if removed:
            logger.debug("Pruned %d expired cache record(s)", removed)
            self._save(doc)
        return doc

    # ── Mappings ──

    def prune(self) -> int:
        """Run one pruning sweep. Returns the number of records removed."""
        doc = self._load()
        removed = self._prune_doc(doc)
        if removed:
            self._save(doc)
        return removed

    def get(self, cache_key: str) -> MappingResponse | None:
        doc = self._load_pruned()
        for raw in doc.entries:
            if raw.get("cache_key") == cache_key:
                return CacheEntry.from_dict(raw).response
        return None

    def get_context(self, mapping_id: str) -> CachedContext | None:
        doc = self._load_pruned()
        for raw in doc.contexts:
            if raw.get("mapping_id") == mapping_id:
                return CachedContext.from_dict(raw)
        return None

    def list_entries(self) -> list[CacheEntry]:
        return [CacheEntry.from_dict(raw) for raw in self._load_pruned().entries]

    def put(self, entry: CacheEntry, context: CachedContext) -> None:
        """Upsert the entry by cache key and its context by mapping id."""
        doc = self._load()
        self._prune_doc(doc)
        doc.entries = [e for e in doc.entries if e.get("cache_key") != entry.cache_key]
        doc.entries.append(entry.to_dict())
        doc.contexts = [c for c in doc.contexts if c.get("mapping_id") != context.mapping_id]
        doc.contexts.append(context.to_dict())
        self._save(doc)
        logger.info("Cached mapping %s (key=%s…)", entry.mapping_id, entry.cache_key[:12])

    def now(self) -> float:
        return self._clock()

    # ── Rate-limit buckets ──

    def get_bucket(self, key: str) -> RateBucket | None:
        raw = self._load().rate_limits.get(key)
        if not isinstance(raw, dict):
            return None
        try:
            return RateBucket(started_at_ms=int(raw["started_at_ms"]), count=int(raw["count"]))
        except (KeyError, TypeError, ValueError):
            return None

    def put_bucket(self, key: str, bucket: RateBucket) -> None:
        doc = self._load()
        doc.rate_limits[key] = {"started_at_ms": bucket.started_at_ms, "count": bucket.count}
        self._save(doc)

    # ── Cost ledger ──

    def record_cost(self, cost: Cost) -> None:
        """Add `cost` to the all-time total and today's UTC bucket. Zero cost is a no-op."""
        if cost.is_zero():
            return
        doc = self._load()
        ledger = doc.cost_ledger
        day = datetime.fromtimestamp(self._clock(), timezone.utc).date().isoformat()

        total = ledger["total"]
        total["prompt_tokens"] = total.get("prompt_tokens", 0) + cost.prompt_tokens
        total["completion_tokens"] = total.get("completion_tokens", 0) + cost.completion_tokens
        total["estimated_usd"] = round(total.get("estimated_usd", 0.0) + cost.estimated_usd, 6)

        daily = ledger["by_date"].setdefault(day, _empty_bucket())
        daily["requests"] = daily.get("requests", 0) + 1
        daily["prompt_tokens"] = daily.get("prompt_tokens", 0) + cost.prompt_tokens
        daily["completion_tokens"] = daily.get("completion_tokens", 0) + cost.completion_tokens
        daily["estimated_usd"] = round(daily.get("estimated_usd", 0.0) + cost.estimated_usd, 6)

        self._save(doc)

    def cost_ledger(self) -> dict:
        ledger = self._load().cost_ledger
        return {"total": dict(ledger["total"]), "by_date": dict(ledger["by_date"])}
