"""
Shared async HTTP helpers with retry + exponential backoff.

Used by every external client (Helius, DexScreener, Jupiter, CoinGecko).
Failures never raise: the helpers log a warning and return ``None``, and
callers degrade to an empty result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


def _parse_retry_after(resp: httpx.Response, default: float) -> float:
    """Seconds from an integer ``Retry-After`` header, else *default*."""
    raw = resp.headers.get("retry-after")
    if raw is not None:
        try:
            return max(float(raw), 0.5)
        except (ValueError, TypeError):
            pass
    return default


async def _request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    params: Optional[dict[str, Any]] = None,
    json_payload: Any = None,
    max_retries: int,
    backoff_base: float,
    label: str,
) -> Optional[Any]:
    for attempt in range(max_retries):
        last = attempt == max_retries - 1
        try:
            resp = await client.request(method, url, params=params, json=json_payload)
            if resp.status_code == 429:
                if last:
                    logger.warning("%s rate-limited, giving up", label)
                    return None
                wait = _parse_retry_after(resp, backoff_base * (2 ** attempt))
                logger.warning("%s rate-limited, retry in %.1fs", label, wait)
                await asyncio.sleep(wait)
                continue
            if resp.status_code in (401, 403):
                logger.warning("%s %d – check the API key / endpoint", label, resp.status_code)
                return None
            resp.raise_for_status()
            if not resp.content:
                return {}
            return resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("%s HTTP %s", label, exc.response.status_code)
        except httpx.RequestError as exc:
            logger.warning("%s request failed: %s", label, type(exc).__name__)
        except ValueError:
            logger.warning("%s returned a non-JSON body", label)
            return None
        if not last:
            await asyncio.sleep(backoff_base * (2 ** attempt))
    return None


async def async_http_get(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: Optional[dict[str, Any]] = None,
    max_retries: int = 3,
    backoff_base: float = 1.0,
    label: str = "HTTP",
) -> Optional[Any]:
    """GET *url*; parsed JSON on success, ``None`` once retries are exhausted."""
    return await _request(
        client, "GET", url, params=params,
        max_retries=max_retries, backoff_base=backoff_base, label=label,
    )


async def async_http_post_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    json_payload: Any,
    params: Optional[dict[str, Any]] = None,
    max_retries: int = 3,
    backoff_base: float = 1.5,
    label: str = "HTTP",
) -> Optional[Any]:
    """POST a JSON body; parsed JSON on success, ``None`` on failure.

    A dict body carrying an ``error`` key counts as a failure.
    """
    body = await _request(
        client, "POST", url, params=params, json_payload=json_payload,
        max_retries=max_retries, backoff_base=backoff_base, label=label,
    )
    if isinstance(body, dict) and "error" in body:
        logger.warning("%s error: %s", label, body["error"])
        return None
    return body


async def async_http_delete(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: Optional[dict[str, Any]] = None,
    label: str = "HTTP",
) -> bool:
    """DELETE *url* once; True on a 2xx response."""
    body = await _request(
        client, "DELETE", url, params=params,
        max_retries=1, backoff_base=0.0, label=label,
    )
    return body is not None
