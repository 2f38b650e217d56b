"""Network retrieval primitive shared by sources and the sandbox."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "remote-sources/1.0"


async def fetch(
    url: str,
    *,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    json: Any = None,
    data: Any = None,
    timeout: float = DEFAULT_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.Response:
    """Perform a single HTTP request and return the response.

    Non-2xx responses raise httpx.HTTPStatusError; transport failures raise
    httpx.RequestError. Callers decide how to translate them.

    Args:
        url: Absolute URL to request.
        method: HTTP method.
        headers: Extra request headers.
        params: Query parameters.
        json: JSON body.
        data: Form body.
        timeout: Request timeout in seconds.
        transport: Optional transport (used by tests).

    Returns:
        The httpx response with its body already read.
    """
    request_headers = {"User-Agent": DEFAULT_USER_AGENT, **(headers or {})}

    async with httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        transport=transport,
    ) as client:
        logger.debug("%s %s", method, url)
        response = await client.request(
            method,
            url,
            headers=request_headers,
            params=params,
            json=json,
            data=data,
        )
        response.raise_for_status()
        return response
