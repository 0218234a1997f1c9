"""Outbound HTTP with per-call timeouts and classified failures."""

from __future__ import annotations

import logging
import time

import httpx

from codemapper.errors import UpstreamTimeout, UpstreamUnavailable

logger = logging.getLogger(__name__)


def fetch_with_timeout(
    client: httpx.Client,
    method: str,
    url: str,
    timeout: float,
    **kwargs,
) -> httpx.Response:
    """Issue one request, aborting after `timeout` seconds.

    Timeouts raise UpstreamTimeout; other transport failures raise
    UpstreamUnavailable. Non-2xx responses are returned to the caller.
    """
    t0 = time.perf_counter()
    try:
        response = client.request(method, url, timeout=timeout, **kwargs)
    except httpx.TimeoutException as e:
        logger.warning("%s %s timed out after %.1fs", method, url, timeout)
        raise UpstreamTimeout(f"Request to {url} timed out after {timeout:.0f}s") from e
    except httpx.HTTPError as e:
        logger.warning("%s %s failed: %s", method, url, e)
        raise UpstreamUnavailable(f"Request to {url} failed: {e}") from e
    logger.debug(
        "%s %s -> %d (%.0fms)", method, url, response.status_code,
        (time.perf_counter() - t0) * 1000,
    )
    return response
