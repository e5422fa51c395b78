"""
Transport protocol for JSON-over-HTTP calls.

Defines the seam where the concrete HTTP implementation plugs in. The
oracle client, the ledger JSON-RPC clients and the HTTP storage backend
all depend on this protocol, not on httpx directly, so the transport
can be swapped for a fake in tests without touching parsing logic.

Concrete implementations:
    - HttpxTransport (default, uses httpx.AsyncClient)
    - FakeTransport (tests, returns canned responses)

Failure mapping (done here, once, so callers see engine exceptions):
    - connect errors, read timeouts, 5xx, 408/425/429 -> TransientNetworkError
    - any other 4xx                                    -> ValidationError
    - a body that is not a JSON object                 -> ValidationError
"""

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable

import httpx

from nexus_proof.errors import (
    ErrorKind,
    StageError,
    TransientNetworkError,
    ValidationError,
    classify_http_status,
)


@runtime_checkable
class JsonTransport(Protocol):
    """Async transport for JSON requests."""

    async def post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON body and return the parsed JSON object response."""
        ...

    async def get_json(self, url: str) -> dict[str, Any]:
        """GET a URL and return the parsed JSON object response."""
        ...

    async def get_bytes(self, url: str) -> bytes:
        """GET a URL and return the raw response body."""
        ...


class HttpxTransport:
    """Default transport using httpx.AsyncClient.

    Args:
        timeout: Per-request timeout in seconds.
        headers: Extra headers sent with every request.
        client: Optional long-lived AsyncClient owned by the caller. When
            omitted, a short-lived client is opened per request.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._headers = headers or {}
        self._client = client

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = {"Accept": "application/json", **self._headers}
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, headers=headers, timeout=self._timeout, **kwargs
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(
                        method, url, headers=headers, **kwargs
                    )
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(
                f"{method} {url} timed out after {self._timeout}s"
            ) from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"{method} {url} failed: {exc}") from exc

        kind = classify_http_status(response.status_code)
        if kind == ErrorKind.TRANSIENT_NETWORK:
            raise TransientNetworkError(
                f"{method} {url} returned HTTP {response.status_code}"
            )
        if kind is not None:
            raise ValidationError(
                f"{method} {url} returned HTTP {response.status_code}",
                error=StageError(
                    kind=ErrorKind.VALIDATION,
                    stage="transport",
                    field="status_code",
                    actual=str(response.status_code),
                    detail=response.text[:200] if response.text else None,
                ),
            )
        return response

    @staticmethod
    def _json_object(response: httpx.Response, url: str) -> dict[str, Any]:
        try:
            result = response.json()
        except json.JSONDecodeError as exc:
            raise ValidationError(
                f"response from {url} was not valid JSON",
                error=StageError(
                    kind=ErrorKind.VALIDATION,
                    stage="transport",
                    field="body",
                    detail=response.text[:200] if response.text else "",
                ),
            ) from exc
        if not isinstance(result, dict):
            raise ValidationError(
                f"response from {url} was not a JSON object",
                error=StageError(
                    kind=ErrorKind.VALIDATION,
                    stage="transport",
                    field="body",
                    actual=type(result).__name__,
                ),
            )
        return result

    async def post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._send(
            "POST",
            url,
            json=payload,
        )
        return self._json_object(response, url)

    async def get_json(self, url: str) -> dict[str, Any]:
        response = await self._send("GET", url)
        return self._json_object(response, url)

    async def get_bytes(self, url: str) -> bytes:
        response = await self._send("GET", url)
        return response.content
