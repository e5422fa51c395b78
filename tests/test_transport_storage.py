"""
Tests for HttpxTransport and the storage backends.

HttpxTransport is exercised against pytest-httpx mocked responses.
Storage backends use FakeTransport / tmp_path files.

Test plan:
- HttpxTransport: JSON object returned, 503/429 -> TransientNetworkError,
  404 -> ValidationError with status code, non-object body and invalid
  JSON -> ValidationError, connect timeout -> TransientNetworkError,
  get_bytes returns raw body
- FileStorage: bare path and file:// uri, locator_digest re-hashes file
- locate_file: digest and file:// uri
- HttpStorage: http passthrough, ipfs rewritten through gateway, ipfs
  without gateway rejected, transient failures retried
- RoutingStorage: dispatch by scheme
- ContentLocator: to_dict / from_dict
"""

from pathlib import Path
from typing import Any

import httpx
import pytest
from pytest_httpx import HTTPXMock

from nexus_proof.config import RetryPolicy
from nexus_proof.errors import TransientNetworkError, ValidationError
from nexus_proof.integrity import hash_bytes
from nexus_proof.storage import (
    ContentLocator,
    FileStorage,
    HttpStorage,
    RoutingStorage,
    StorageBackend,
    locate_file,
)
from nexus_proof.transport import HttpxTransport, JsonTransport

URL = "https://svc.example/api"
FAST = RetryPolicy(max_attempts=3, backoff_min_s=0, backoff_max_s=0, call_timeout_s=1.0)

# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------


class FakeTransport:
    """Serves bytes by URL, failing the first ``failures`` fetches."""

    def __init__(self, bodies: dict[str, bytes], failures: int = 0) -> None:
        self._bodies = bodies
        self._failures = failures
        self.fetched: list[str] = []

    async def post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    async def get_json(self, url: str) -> dict[str, Any]:
        raise NotImplementedError

    async def get_bytes(self, url: str) -> bytes:
        self.fetched.append(url)
        if self._failures > 0:
            self._failures -= 1
            raise TransientNetworkError("gateway busy")
        return self._bodies[url]


# ---------------------------------------------------------------------------
# HttpxTransport
# ---------------------------------------------------------------------------


class TestHttpxTransport:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(HttpxTransport(), JsonTransport)

    @pytest.mark.asyncio
    async def test_post_json_ok(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, method="POST", json={"ok": True})
        assert await HttpxTransport().post_json(URL, {"a": 1}) == {"ok": True}
        request = httpx_mock.get_request()
        assert request is not None
        assert request.headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_get_json_ok(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, method="GET", json={"status": "pending"})
        assert await HttpxTransport().get_json(URL) == {"status": "pending"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [500, 503, 408, 429])
    async def test_transient_status(self, httpx_mock: HTTPXMock, status: int) -> None:
        httpx_mock.add_response(url=URL, status_code=status)
        with pytest.raises(TransientNetworkError, match=str(status)):
            await HttpxTransport().get_json(URL)

    @pytest.mark.asyncio
    async def test_client_error_is_validation(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, status_code=404, text="no such request")
        with pytest.raises(ValidationError) as exc_info:
            await HttpxTransport().get_json(URL)
        error = exc_info.value.error
        assert error is not None
        assert error.field == "status_code"
        assert error.actual == "404"
        assert error.detail == "no such request"

    @pytest.mark.asyncio
    async def test_non_object_body(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, json=[1, 2, 3])
        with pytest.raises(ValidationError, match="not a JSON object"):
            await HttpxTransport().get_json(URL)

    @pytest.mark.asyncio
    async def test_invalid_json(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, text="<html>")
        with pytest.raises(ValidationError, match="not valid JSON"):
            await HttpxTransport().get_json(URL)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ConnectTimeout("slow"), url=URL)
        with pytest.raises(TransientNetworkError, match="timed out"):
            await HttpxTransport(timeout=1.0).get_json(URL)

    @pytest.mark.asyncio
    async def test_get_bytes(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, content=b"\x00\x01raw")
        assert await HttpxTransport().get_bytes(URL) == b"\x00\x01raw"

    @pytest.mark.asyncio
    async def test_shared_client(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, json={"shared": 1})
        async with httpx.AsyncClient() as client:
            transport = HttpxTransport(client=client, headers={"X-Api-Key": "k"})
            assert await transport.get_json(URL) == {"shared": 1}
        request = httpx_mock.get_request()
        assert request is not None
        assert request.headers["X-Api-Key"] == "k"


# ---------------------------------------------------------------------------
# ContentLocator
# ---------------------------------------------------------------------------


class TestContentLocator:
    def test_round_trip(self) -> None:
        locator = ContentLocator("ipfs://bafy", hash_bytes(b"x"))
        assert ContentLocator.from_dict(locator.to_dict()) == locator

    def test_empty_uri_rejected(self) -> None:
        with pytest.raises(ValueError):
            ContentLocator("", hash_bytes(b"x"))


# ---------------------------------------------------------------------------
# FileStorage
# ---------------------------------------------------------------------------


class TestFileStorage:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(FileStorage(), StorageBackend)

    @pytest.mark.asyncio
    async def test_bare_path(self, tmp_path: Path) -> None:
        path = tmp_path / "doc.bin"
        path.write_bytes(b"hello world")
        locator = ContentLocator(str(path), hash_bytes(b"hello world"))
        storage = FileStorage()
        assert await storage.retrieve(locator) == b"hello world"
        assert storage.locator_digest(locator) == hash_bytes(b"hello world")

    @pytest.mark.asyncio
    async def test_locate_file(self, tmp_path: Path) -> None:
        path = tmp_path / "doc with space.bin"
        path.write_bytes(b"content")
        locator = locate_file(path)
        assert locator.uri.startswith("file://")
        assert locator.digest == hash_bytes(b"content")
        assert await FileStorage().retrieve(locator) == b"content"

    def test_locator_digest_reflects_current_bytes(self, tmp_path: Path) -> None:
        path = tmp_path / "doc.bin"
        path.write_bytes(b"v1")
        locator = locate_file(path)
        path.write_bytes(b"v2")
        assert FileStorage().locator_digest(locator) == hash_bytes(b"v2")
        assert locator.digest == hash_bytes(b"v1")

    @pytest.mark.asyncio
    async def test_unsupported_scheme(self) -> None:
        with pytest.raises(ValueError, match="scheme"):
            await FileStorage().retrieve(ContentLocator("s3://b/k", hash_bytes(b"")))


# ---------------------------------------------------------------------------
# HttpStorage
# ---------------------------------------------------------------------------


class TestHttpStorage:
    def test_resolve(self) -> None:
        storage = HttpStorage("https://gw.example/", transport=FakeTransport({}))
        assert storage.resolve("https://cdn.example/a") == "https://cdn.example/a"
        assert storage.resolve("ipfs://bafy/doc.pdf") == "https://gw.example/ipfs/bafy/doc.pdf"

    def test_ipfs_without_gateway(self) -> None:
        with pytest.raises(ValueError, match="gateway_url"):
            HttpStorage(transport=FakeTransport({})).resolve("ipfs://bafy")

    @pytest.mark.asyncio
    async def test_retrieve_retries_transient(self) -> None:
        transport = FakeTransport({"https://gw.example/ipfs/bafy": b"data"}, failures=2)
        storage = HttpStorage("https://gw.example", transport=transport, retry=FAST)
        locator = ContentLocator("ipfs://bafy", hash_bytes(b"data"))
        assert await storage.retrieve(locator) == b"data"
        assert len(transport.fetched) == 3
        assert storage.locator_digest(locator) == hash_bytes(b"data")

    @pytest.mark.asyncio
    async def test_retrieve_exhausted(self) -> None:
        transport = FakeTransport({"https://cdn.example/a": b"data"}, failures=10)
        storage = HttpStorage(transport=transport, retry=FAST)
        with pytest.raises(TransientNetworkError):
            await storage.retrieve(ContentLocator("https://cdn.example/a", hash_bytes(b"data")))


# ---------------------------------------------------------------------------
# RoutingStorage
# ---------------------------------------------------------------------------


class TestRoutingStorage:
    @pytest.mark.asyncio
    async def test_dispatch(self, tmp_path: Path) -> None:
        path = tmp_path / "local.bin"
        path.write_bytes(b"local")
        transport = FakeTransport({"https://cdn.example/remote": b"remote"})
        storage = RoutingStorage(http_storage=HttpStorage(transport=transport, retry=FAST))

        assert await storage.retrieve(locate_file(path)) == b"local"
        remote = ContentLocator("https://cdn.example/remote", hash_bytes(b"remote"))
        assert await storage.retrieve(remote) == b"remote"
        assert transport.fetched == ["https://cdn.example/remote"]
