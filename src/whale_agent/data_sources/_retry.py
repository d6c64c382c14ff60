"""
HTTP helpers shared by the context data sources and the provider adapters.

Context lookups are auxiliary: ``async_http_get`` never raises, it returns
``None`` once retries are exhausted and the caller records an
``Unavailable`` marker instead.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

_MIN_RETRY_AFTER = 0.5


def parse_retry_after(resp: httpx.Response, default: Optional[float] = None) -> Optional[float]:
    """Seconds to wait according to ``Retry-After``, or *default* when absent.

    Both the delta-seconds and the HTTP-date forms are understood; a date in
    the past yields the minimum wait.
    """
    raw = resp.headers.get("retry-after")
    if not raw:
        return default
    try:
        seconds = float(raw)
    except (TypeError, ValueError):
        try:
            when = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return default
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()
    return max(seconds, _MIN_RETRY_AFTER)


async def async_http_get(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
    max_retries: int = 2,
    backoff_base: float = 0.5,
    label: str = "HTTP",
) -> Optional[Any]:
    """GET *url* and return its JSON body, or ``None``.

    429 (honouring ``Retry-After``), 5xx and transport errors are retried up
    to *max_retries* attempts in total; any other 4xx or a non-JSON body
    gives up at once.
    """
    for attempt in range(max_retries):
        delay = backoff_base * (2 ** attempt)
        try:
            resp = await client.get(url, params=params, headers=headers)
            if resp.status_code == 429:
                delay = parse_retry_after(resp, delay)
                logger.warning("%s rate-limited on %s", label, url)
            elif 400 <= resp.status_code < 500:
                logger.warning("%s HTTP %s for %s", label, resp.status_code, url)
                return None
            else:
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("%s HTTP %s for %s", label, exc.response.status_code, url)
        except httpx.RequestError as exc:
            logger.warning("%s request to %s failed: %s", label, url, exc)
        except ValueError:
            logger.warning("%s returned a non-JSON body for %s", label, url)
            return None

        if attempt < max_retries - 1:
            logger.info("%s retry %d/%d in %.1fs", label, attempt + 2, max_retries, delay)
            await asyncio.sleep(delay)

    logger.warning("%s gave up on %s after %d attempt(s)", label, url, max_retries)
    return None
