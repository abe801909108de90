# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
HTTP capability handed to probes.

A thin wrapper over httpx.AsyncClient that never follows redirects,
always applies a timeout, and turns every transport failure into
ProbeNetworkError. Response bodies are returned as text; callers decide
how to decode them.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from ..config.defaults import HTTP_TIMEOUT_MS, USER_AGENT, env_seconds_ms
from ..core.errors import ProbeNetworkError

lib_logger = logging.getLogger("openusage")


@dataclass
class HttpResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body_text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    def json(self) -> Optional[Any]:
        """Parse the body as JSON, returning None when it is not JSON."""
        return try_parse_json(self.body_text)


def try_parse_json(text: Optional[str]) -> Optional[Any]:
    if not text:
        return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None


class HttpClient:
    """
    Redirect-free async HTTP client used by every probe.

    Args:
        client: Optional pre-built httpx.AsyncClient (tests pass one backed
            by httpx.MockTransport). When omitted one is created lazily and
            closed by aclose().
        default_timeout_ms: Timeout applied when a request gives none
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        default_timeout_ms: Optional[int] = None,
        user_agent: str = USER_AGENT,
    ):
        self._client = client
        self._owns_client = client is None
        self.default_timeout_ms = default_timeout_ms or env_seconds_ms(
            "OPENUSAGE_HTTP_TIMEOUT", HTTP_TIMEOUT_MS
        )
        self.user_agent = user_agent

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=False)
        return self._client

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body_text: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> HttpResponse:
        """
        Perform one request.

        Returns:
            HttpResponse for any HTTP status, including 4xx/5xx

        Raises:
            ProbeNetworkError: on timeout, DNS, connection or protocol failure
        """
        request_headers = {"User-Agent": self.user_agent}
        if headers:
            request_headers.update(headers)
        timeout = (timeout_ms or self.default_timeout_ms) / 1000.0
        content = body_text.encode("utf-8") if body_text is not None else None

        try:
            response = await self._get_client().request(
                method,
                url,
                headers=request_headers,
                content=content,
                timeout=timeout,
                follow_redirects=False,
            )
        except httpx.TimeoutException as e:
            lib_logger.warning(f"{method} {url} timed out after {timeout:.0f}s")
            raise ProbeNetworkError(
                "Usage request timed out. Check your connection."
            ) from e
        except httpx.RequestError as e:
            lib_logger.warning(f"{method} {url} failed: {type(e).__name__}: {e}")
            raise ProbeNetworkError() from e

        lib_logger.debug(f"{method} {url} -> {response.status_code}")
        return HttpResponse(
            status=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            body_text=response.text,
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
