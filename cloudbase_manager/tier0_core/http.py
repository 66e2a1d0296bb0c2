"""
cloudbase_manager.tier0_core.http
──────────────────────────────────
HTTP transport for signed control-plane calls. One function, one request:
send bytes, read text, decode JSON. Network failures become TransportError,
non-JSON bodies (gateway HTML pages, truncated bodies) become
ResponseParseError carrying the raw text.

Backed by: httpx (async HTTP, optional proxy)
"""
from __future__ import annotations

import json
from typing import Any

import httpx

from cloudbase_manager.tier0_core.errors import ResponseParseError, TransportError
from cloudbase_manager.tier0_core.redact import scrub_string


async def fetch_json(
    url: str,
    *,
    method: str = "POST",
    headers: dict[str, str] | None = None,
    content: bytes | None = None,
    timeout: float = 60.0,
    proxy: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Any:
    """
    Send one request and return the decoded JSON body.

    ``transport`` lets tests swap in ``httpx.MockTransport``; production
    callers leave it unset.
    """
    client_kwargs: dict[str, Any] = {"timeout": timeout}
    if transport is not None:
        client_kwargs["transport"] = transport
    elif proxy:
        client_kwargs["proxy"] = proxy

    try:
        async with httpx.AsyncClient(**client_kwargs) as client:
            response = await client.request(method, url, headers=headers, content=content)
            text = response.text
    except httpx.HTTPError as exc:
        raise TransportError(
            scrub_string(str(exc) or type(exc).__name__),
            code=type(exc).__name__,
            original=exc,
        ) from exc

    try:
        return json.loads(text)
    except ValueError as exc:
        raise ResponseParseError(text, original=exc) from exc


__all__ = ["fetch_json"]
