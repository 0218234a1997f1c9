"""API router: map, upload, fetch mapping, ask, improve, cost ledger."""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.datastructures import FormData

from codemapper.agent.enricher import Enricher
from codemapper.agent.provider import create_provider
from codemapper.errors import (
    MapperError,
    NotFoundError,
    UpstreamTimeout,
    UpstreamUnavailable,
    ValidationError,
)
from codemapper.ingest.ingestor import ArchiveIngestor
from codemapper.mapper.ask import AskEngine
from codemapper.mapper.improve import ImproveEngine
from codemapper.mapper.pipeline import MapperPipeline
from codemapper.models import MappingResponse, MapRequest
from codemapper.ratelimit import RateLimiter
from codemapper.storage import create_store
from codemapper.storage.cache_store import CacheStore

logger = logging.getLogger(__name__)

router = APIRouter()


@dataclass
class Services:
    store: CacheStore
    limiter: RateLimiter
    pipeline: MapperPipeline
    ask: AskEngine
    improve: ImproveEngine


def build_services(store: CacheStore | None = None, enricher: Enricher | None = None) -> Services:
    store = store or create_store()
    enricher = enricher or Enricher(create_provider())
    return Services(
        store=store,
        limiter=RateLimiter(store),
        pipeline=MapperPipeline(store, ArchiveIngestor(), enricher),
        ask=AskEngine(store, enricher),
        improve=ImproveEngine(store, enricher),
    )


# Lazy-initialized on first request
_services: Services | None = None


def _get_services() -> Services:
    global _services
    if _services is None:
        logger.info("Initializing mapper services...")
        t0 = time.perf_counter()
        _services = build_services()
        logger.info("Mapper services ready (%.2fs)", time.perf_counter() - t0)
    return _services


# ── Helpers ──


def client_id_for(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else ""


def _rate_limited(services: Services, request: Request, action: str) -> JSONResponse | None:
    decision = services.limiter.enforce(client_id_for(request), action)
    if decision.allowed:
        return None
    retry_after_ms = decision.retry_after_ms or 0
    return JSONResponse(
        status_code=429,
        content={
            "detail": f"Rate limit exceeded for {action}. Try again later.",
            "retry_after_ms": retry_after_ms,
        },
        headers={"Retry-After": str(math.ceil(retry_after_ms / 1000))},
    )


def _http_error(e: MapperError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, UpstreamTimeout):
        return HTTPException(status_code=504, detail=str(e))
    if isinstance(e, UpstreamUnavailable):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _run_mapping(services: Services, map_request: MapRequest) -> dict[str, Any]:
    t0 = time.perf_counter()
    try:
        response: MappingResponse = services.pipeline.run(map_request)
    except MapperError as e:
        logger.warning("Mapping failed after %.2fs: %s", time.perf_counter() - t0, e)
        raise _http_error(e)
    logger.info(
        "Mapping %s ready (cache_hit=%s, %.2fs)",
        response.mapping_id, response.cache_hit, time.perf_counter() - t0,
    )
    return response.to_dict()


def _parse_focus_form(values: list[str]) -> list[str]:
    """Accept repeated form fields or a single JSON array string."""
    if len(values) == 1 and values[0].strip().startswith("["):
        try:
            parsed = json.loads(values[0])
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="focus_areas must be a JSON array of strings")
        if not isinstance(parsed, list):
            raise HTTPException(status_code=400, detail="focus_areas must be a JSON array of strings")
        return [str(v) for v in parsed]
    return [v for v in values if v]


def _form_text(form: FormData, key: str) -> str | None:
    value = form.get(key)
    return value if isinstance(value, str) and value else None


# ── Health ──


@router.get("/health")
def health():
    return {"status": "ok"}


# ── Map ──


class MapBody(BaseModel):
    repo_url: str | None = None
    auth_token: str | None = None
    focus_areas: list[str] = Field(default_factory=list)


@router.post("/api/map")
def map_repository(body: MapBody, request: Request):
    services = _get_services()
    if (limited := _rate_limited(services, request, "map")) is not None:
        return limited
    logger.info("POST /api/map repo_url=%r focus=%s", body.repo_url, body.focus_areas)
    return _run_mapping(services, MapRequest(
        repo_url=body.repo_url,
        auth_token=body.auth_token,
        focus_areas=body.focus_areas,
        client_id=client_id_for(request),
    ))


@router.post("/api/map/upload")
async def map_upload(request: Request):
    services = _get_services()
    limited = await run_in_threadpool(_rate_limited, services, request, "map")
    if limited is not None:
        return limited
    # Multipart body is parsed only after the rate check.
    async with request.form() as form:
        archive = form.get("archive")
        if archive is None or isinstance(archive, str):
            raise HTTPException(status_code=400, detail="archive file is required")
        data = await archive.read()
        logger.info("POST /api/map/upload name=%r (%d bytes)", archive.filename, len(data))
        map_request = MapRequest(
            repo_url=_form_text(form, "repo_url"),
            auth_token=_form_text(form, "auth_token"),
            archive_bytes=data,
            archive_name=archive.filename,
            focus_areas=_parse_focus_form([v for v in form.getlist("focus_areas") if isinstance(v, str)]),
            client_id=client_id_for(request),
        )
    return await run_in_threadpool(_run_mapping, services, map_request)


@router.get("/api/map/{mapping_id}")
def get_mapping(mapping_id: str):
    try:
        response = _get_services().pipeline.get_mapping(mapping_id)
    except MapperError as e:
        raise _http_error(e)
    return response.to_dict()


# ── Ask / Improve ──


class AskBody(BaseModel):
    mapping_id: str
    question: str


@router.post("/api/ask")
def ask(body: AskBody, request: Request):
    services = _get_services()
    if (limited := _rate_limited(services, request, "ask")) is not None:
        return limited
    logger.info("POST /api/ask mapping=%s question=%r", body.mapping_id, body.question[:120])
    try:
        return services.ask.ask(body.mapping_id, body.question).to_dict()
    except MapperError as e:
        raise _http_error(e)


class ImproveBody(BaseModel):
    mapping_id: str
    diagram_id: str
    instruction: str | None = None


@router.post("/api/improve")
def improve(body: ImproveBody, request: Request):
    services = _get_services()
    if (limited := _rate_limited(services, request, "improve")) is not None:
        return limited
    logger.info("POST /api/improve mapping=%s diagram=%s", body.mapping_id, body.diagram_id)
    try:
        diagram = services.improve.improve(body.mapping_id, body.diagram_id, body.instruction)
    except MapperError as e:
        raise _http_error(e)
    return {"diagram": diagram.to_dict()}


# ── Costs ──


@router.get("/api/costs")
def costs():
    return _get_services().store.cost_ledger()
