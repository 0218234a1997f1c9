"""Exception types shared across the mapping pipeline."""

from __future__ import annotations


class MapperError(Exception):
    """Base class for mapping failures surfaced to callers."""


class ValidationError(MapperError):
    """Raised when a request is malformed or missing required fields."""


class UpstreamUnavailable(MapperError):
    """Raised when the source-hosting API cannot be reached or refuses a request."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class UpstreamTimeout(UpstreamUnavailable):
    """Raised when an outbound call exceeds its timeout."""


class NotFoundError(MapperError):
    """Raised when a mapping or diagram id is unknown or expired."""
