from __future__ import annotations

import asyncio
import logging

import httpx

from .config import HttpConfig
from .errors import FetchError

logger = logging.getLogger(__name__)


def make_client(http: HttpConfig, referer: str | None = None, **kwargs) -> httpx.AsyncClient:
    headers = {"User-Agent": http.user_agent}
    if referer:
        headers["Referer"] = referer
    return httpx.AsyncClient(
        timeout=http.timeout,
        follow_redirects=True,
        headers=headers,
        **kwargs,
    )


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    retries: int = 3,
    delay: float = 1.0,
    headers: dict | None = None,
) -> httpx.Response:
    """GET ``url``, retrying transport errors and non-2xx answers.

    Waits ``delay * (attempt + 1)`` seconds between attempts and raises
    FetchError once ``retries`` attempts have failed.
    """
    last_reason = ""
    for attempt in range(retries):
        try:
            response = await client.get(url, headers=headers)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            last_reason = f"HTTP {exc.response.status_code}"
        except httpx.HTTPError as exc:
            last_reason = f"{type(exc).__name__}: {exc}"
        logger.debug("fetch attempt %d/%d failed for %s: %s", attempt + 1, retries, url, last_reason)
        if attempt < retries - 1:
            await asyncio.sleep(delay * (attempt + 1))
    raise FetchError(url, last_reason)


async def fetch_json(client: httpx.AsyncClient, url: str, retries: int = 3, delay: float = 1.0):
    response = await fetch_with_retry(
        client, url, retries, delay, headers={"Accept": "application/json"}
    )
    return response.json()


async def fetch_text(client: httpx.AsyncClient, url: str, retries: int = 3, delay: float = 1.0) -> str:
    response = await fetch_with_retry(client, url, retries, delay)
    return response.text
