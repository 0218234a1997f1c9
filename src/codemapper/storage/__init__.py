"""Mapping cache storage."""

from __future__ import annotations

from codemapper import config
from codemapper.storage.backend import DocumentBackend, JsonFileBackend
from codemapper.storage.cache_store import CacheStore


def create_store() -> CacheStore:
    """Build the CacheStore selected by CODEMAPPER_CACHE_BACKEND."""
    backend: DocumentBackend
    if config.CACHE_BACKEND == "sqlite":
        from codemapper.storage.sqlite_store import SqliteBackend
        backend = SqliteBackend(config.SQLITE_PATH)
    else:
        backend = JsonFileBackend(config.CACHE_PATH)
    return CacheStore(backend, ttl_secs=config.CACHE_TTL_SECS)
