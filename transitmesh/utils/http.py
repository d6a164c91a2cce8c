"""Shared aiohttp session, one instance for the whole process lifetime.

- lazy init on first use
- 15s total / 5s connect timeout (the coordinator adds its own per-call deadline)
- exponential back-off retry on transient network errors
- closed via close_session() from the bot shutdown hook
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

_session: aiohttp.ClientSession | None = None

MAX_RETRIES = 2
RETRY_BACKOFF = 1.5
_TIMEOUT = aiohttp.ClientTimeout(total=15, connect=5)
_HEADERS = {
    "User-Agent": "transitmesh/1.0 (multi-modal journey coordinator)",
    "Accept": "application/json",
}


async def get_session() -> aiohttp.ClientSession:
    global _session
    if _session is None or _session.closed:
        _session = aiohttp.ClientSession(timeout=_TIMEOUT, headers=_HEADERS)
    return _session


async def close_session() -> None:
    global _session
    if _session and not _session.closed:
        await _session.close()
    _session = None


async def fetch_json(
    url: str,
    *,
    params: dict[str, Any] | None = None,
    retries: int = MAX_RETRIES,
) -> Any:
    """GET *url* and return parsed JSON.  Retries on transient network errors."""
    session = await get_session()
    last_exc: Exception | None = None
    query = _stringify(params) if params else None

    for attempt in range(1, retries + 1):
        try:
            async with session.get(url, params=query) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            last_exc = exc
            if attempt < retries:
                wait = RETRY_BACKOFF ** attempt
                logger.warning(
                    "%s attempt %d/%d failed (%s), retry in %.1fs",
                    url, attempt, retries, exc, wait,
                )
                await asyncio.sleep(wait)

    logger.error("%s failed after %d attempts: %s", url, retries, last_exc)
    raise last_exc  # type: ignore[misc]


def _stringify(params: dict[str, Any]) -> dict[str, str]:
    # aiohttp rejects bool query values
    out: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            out[key] = "true" if value else "false"
        else:
            out[key] = str(value)
    return out
