"""Liveness probe for the self-hosted proxy.

Never raises: every failure is a plain False plus a WARNING, and the
pipeline treats False as "skip the proxy tier".
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from divination.config import HEALTH_TIMEOUT

logger = logging.getLogger(__name__)


def health_url(base_url: str) -> str:
    return f"{base_url.rstrip('/')}/api/health"


async def probe(
    base_url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = HEALTH_TIMEOUT,
) -> bool:
    """True only for a 2xx answer whose JSON body is {"status": "ok"}."""
    url = health_url(base_url)
    try:
        async with asyncio.timeout(timeout):
            if client is None:
                async with httpx.AsyncClient(timeout=timeout) as own_client:
                    resp = await own_client.get(url)
            else:
                resp = await client.get(url, timeout=timeout)
        resp.raise_for_status()
        body = resp.json()
    except Exception as e:
        logger.warning("Proxy health check failed for %s: %s", url, e)
        return False

    if not isinstance(body, dict) or body.get("status") != "ok":
        logger.warning("Proxy at %s reported unhealthy status: %.80r", url, body)
        return False
    return True
