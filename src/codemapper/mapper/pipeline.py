"""Mapping pipeline: ingest, cache lookup, heuristic seed, AI refinement, persist."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone

from codemapper import config
from codemapper.agent.enricher import Enricher
from codemapper.diagrams.builder import build_heuristic_diagrams
from codemapper.diagrams.sanitize import sanitize_diagram
from codemapper.errors import NotFoundError
from codemapper.ingest.ingestor import ArchiveIngestor
from codemapper.models import (
    Cost,
    DiagramPayload,
    MappingResponse,
    MappingSummary,
    MapRequest,
    RepositoryModel,
)
from codemapper.storage.cache_store import CacheEntry, CachedContext, CacheStore, build_cache_key

logger = logging.getLogger(__name__)

DiagramBuilder = Callable[[RepositoryModel, Sequence[str]], list[DiagramPayload]]

CACHE_HIT_LOG = "Loaded cached mapping for unchanged commit snapshot."


def normalize_focus_areas(focus_areas: Iterable[str] | None) -> list[str]:
    """Keep known focus areas only, first occurrence wins, at most MAX_FOCUS_AREAS."""
    allowed = [f for f in (focus_areas or []) if f in config.FOCUS_AREAS]
    return list(dict.fromkeys(allowed))[: config.MAX_FOCUS_AREAS]


def summarize_model(model: RepositoryModel) -> str:
    """Fixed-field text summary sent to the AI backend instead of the file tree."""
    top_modules = ", ".join(
        f"{m.name} ({m.file_count} files)" for m in model.top_level_modules[:10]
    )
    agent_sample = ", ".join(
        f"{link.source}->{link.target} ({link.protocol})" for link in model.agent_links[:20]
    )
    return "\n".join([
        f"Repository: {model.repo_name}",
        f"Commit: {model.commit_sha}",
        f"Languages: {', '.join(model.languages) or 'unknown'}",
        f"Frameworks: {', '.join(model.frameworks) or 'unknown'}",
        f"Files analyzed: {len(model.files)}",
        f"Top modules: {top_modules or 'none'}",
        f"API routes: {', '.join(model.api_routes[:10]) or 'none'}",
        f"Agent links: {agent_sample or 'none'}",
        f"Deployment signals: {', '.join(model.deployment_signals) or 'none'}",
    ])


def build_mapping_summary(model: RepositoryModel) -> MappingSummary:
    agents = {name for link in model.agent_links for name in (link.source, link.target)}
    return MappingSummary(
        repo_name=model.repo_name,
        commit_sha=model.commit_sha,
        source=model.source,
        frameworks=list(model.frameworks),
        languages=list(model.languages),
        file_count=len(model.files),
        route_count=len(model.api_routes),
        agent_count=len(agents),
        generated_at=datetime.now(timezone.utc).isoformat(),
    )


class MapperPipeline:
    """Orchestrates one mapping request end to end."""

    def __init__(
        self,
        store: CacheStore,
        ingestor: ArchiveIngestor,
        enricher: Enricher,
        builder: DiagramBuilder = build_heuristic_diagrams,
        self_critique: bool | None = None,
    ) -> None:
        self._store = store
        self._ingestor = ingestor
        self._enricher = enricher
        self._builder = builder
        self._self_critique = config.SELF_CRITIQUE if self_critique is None else self_critique

    def run(self, request: MapRequest) -> MappingResponse:
        """Map a repository, serving an unchanged snapshot from cache.

        Raises:
            ValidationError: bad input combination or URL.
            UpstreamUnavailable: the repository could not be fetched.
        """
        focus_areas = normalize_focus_areas(request.focus_areas)
        progress_logs: list[str] = []
        t0 = time.perf_counter()

        # The extracted tree is removed when this block exits, whatever happens inside.
        with self._ingestor.ingest(request, progress=progress_logs.append) as model:
            cache_key = build_cache_key(model.commit_sha, model.repo_name, focus_areas)

            cached = self._store.get(cache_key)
            if cached is not None:
                logger.info("Cache hit for %s@%s -> %s", model.repo_name, model.commit_sha, cached.mapping_id)
                cached.cache_hit = True
                cached.progress_logs = [*progress_logs, CACHE_HIT_LOG]
                return cached

            progress_logs.append("Building interaction graph and architecture model...")
            diagrams = self._builder(model, focus_areas)
            summary_text = summarize_model(model)

            progress_logs.append("Generating Mermaid + React-Flow diagrams...")
            diagrams, cost = self._enricher.refine(
                model, diagrams, focus_areas, summary_text, mode="initial",
            )

            if self._self_critique:
                progress_logs.append("Refining for clarity with self-critique pass...")
                diagrams, critique_cost = self._enricher.refine(
                    model, diagrams, focus_areas, summary_text, mode="critique",
                )
                cost = cost.merge(critique_cost)

            diagrams = [sanitize_diagram(d) for d in diagrams]

            response = MappingResponse(
                mapping_id=str(uuid.uuid4()),
                cache_key=cache_key,
                cache_hit=False,
                progress_logs=progress_logs,
                summary=build_mapping_summary(model),
                diagrams=diagrams,
                cost=cost,
            )
            self._persist(response, model, focus_areas, summary_text, cost)

        logger.info(
            "Mapped %s -> %s: %d diagrams, %d/%d tokens, %.2fs",
            model.repo_name, response.mapping_id, len(response.diagrams),
            cost.prompt_tokens, cost.completion_tokens, time.perf_counter() - t0,
        )
        return response

    def _persist(
        self,
        response: MappingResponse,
        model: RepositoryModel,
        focus_areas: list[str],
        summary_text: str,
        cost: Cost,
    ) -> None:
        now = self._store.now()
        self._store.put(
            CacheEntry(
                cache_key=response.cache_key,
                mapping_id=response.mapping_id,
                created_at=now,
                commit_sha=model.commit_sha,
                repo_name=model.repo_name,
                focus_areas=focus_areas,
                response=response,
            ),
            CachedContext(
                mapping_id=response.mapping_id,
                created_at=now,
                summary_text=summary_text,
                focus_areas=focus_areas,
                response=response,
            ),
        )
        self._store.record_cost(cost)

    def get_mapping(self, mapping_id: str) -> MappingResponse:
        """Return a live cached mapping by id."""
        context = self._store.get_context(mapping_id)
        if context is None:
            raise NotFoundError("Mapping session not found or expired. Please remap the codebase.")
        return context.response
