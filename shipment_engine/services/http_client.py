"""
Shared HTTP helper for outbound provider calls.
Single attempt with a bounded timeout; transport failures become ProviderUnreachable
so callers can tell "no response" apart from an error response.
"""
import logging
from typing import Any, Optional

import httpx

from shipment_engine.errors import ProviderUnreachable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


async def send_request(
    method: str,
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Perform one HTTP request. Never retries; raises ProviderUnreachable on timeout/network errors."""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            return await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        logger.warning("HTTP %s %s timed out after %ss", method, url, timeout)
        raise ProviderUnreachable("Timed out waiting for OTO API", details=str(e)) from e
    except httpx.TransportError as e:
        logger.warning("HTTP %s %s failed: %s", method, url, e)
        raise ProviderUnreachable("Unable to reach OTO API", details=str(e)) from e


async def post_no_retry(
    url: str,
    *,
    json: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """POST with no retries (non-idempotent)."""
    return await send_request(
        "POST", url, json=json or {}, headers=headers or {}, timeout=timeout, transport=transport
    )
