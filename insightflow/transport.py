"""
HTTP transport capability used by the provider adapters.

Adapters only see ``Transport.request``; TLS, pooling and timeouts belong to
the implementation. ``HttpxTransport`` is the production implementation on
top of ``httpx.AsyncClient``.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx

from insightflow.errors import DecodeError, NetworkError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.body or b"null")
        except ValueError as e:
            raise DecodeError(f"Response is not valid JSON: {e}") from e


class Transport(Protocol):
    """
    Minimal HTTP capability: one request in, status/headers/body out.

    Implementations raise NetworkError for transport-level failures and never
    raise for HTTP error statuses.
    """

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
        *,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        ...


class HttpxTransport:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
        *,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        try:
            response = await self._client.request(
                method,
                url,
                headers=dict(headers or {}),
                content=body,
                timeout=timeout if timeout is not None else self._timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise NetworkError(f"{method} {url} failed: {e}") from e
        return TransportResponse(
            status_code=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
