"""
Storage collaborator: where attested bytes live.

The engine never uploads. It consumes two operations:

    - retrieve(locator) -> bytes
    - locator_digest(locator) -> Digest

Concrete backends:
    - FileStorage: local paths and ``file://`` URIs.
    - HttpStorage: HTTP(S) URLs, and ``ipfs://`` URIs resolved through a
      gateway.
    - FakeStorage (tests)

A ContentLocator is immutable once issued. Its digest is the storage
collaborator's claim about the bytes; the engine re-hashes whatever it
retrieves and treats a mismatch as an integrity fault.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from urllib.parse import unquote, urlparse

from nexus_proof.config import RetryPolicy
from nexus_proof.integrity import Digest, hash_bytes
from nexus_proof.retry import call_with_retry
from nexus_proof.transport import HttpxTransport, JsonTransport


@dataclass(frozen=True)
class ContentLocator:
    """Opaque reference to externally stored bytes.

    Attributes:
        uri: Where the bytes can be fetched.
        digest: Digest of the stored bytes.
    """

    uri: str
    digest: Digest

    def __post_init__(self) -> None:
        if not self.uri:
            raise ValueError("locator uri must be non-empty")

    def to_dict(self) -> dict[str, str]:
        return {"uri": self.uri, "digest": self.digest.prefixed}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentLocator:
        return cls(uri=data["uri"], digest=Digest.parse(data["digest"]))


@runtime_checkable
class StorageBackend(Protocol):
    """Interface for the byte storage collaborator."""

    async def retrieve(self, locator: ContentLocator) -> bytes:
        """Fetch the bytes a locator points at."""
        ...

    def locator_digest(self, locator: ContentLocator) -> Digest:
        """Digest the storage collaborator reports for a locator."""
        ...


# =========================================================================
# Local files
# =========================================================================


def _path_from_uri(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme == "":
        return Path(uri)
    raise ValueError(f"FileStorage cannot resolve uri scheme {parsed.scheme!r}")


class FileStorage:
    """Storage backend over the local filesystem."""

    async def retrieve(self, locator: ContentLocator) -> bytes:
        return _path_from_uri(locator.uri).read_bytes()

    def locator_digest(self, locator: ContentLocator) -> Digest:
        return hash_bytes(_path_from_uri(locator.uri).read_bytes())


def locate_file(path: str | Path) -> ContentLocator:
    """Issue a ``file://`` locator for a local file."""
    p = Path(path).resolve()
    return ContentLocator(uri=p.as_uri(), digest=hash_bytes(p.read_bytes()))


# =========================================================================
# HTTP / gateway
# =========================================================================


class HttpStorage:
    """Storage backend over HTTP.

    ``http(s)://`` URIs are fetched as-is. ``ipfs://<cid>[/path]`` URIs are
    rewritten to ``{gateway_url}/ipfs/<cid>[/path]``.

    Args:
        gateway_url: Base URL of a content-addressed gateway.
        transport: Injectable transport. Defaults to HttpxTransport.
        retry: Retry policy for fetches.
    """

    def __init__(
        self,
        gateway_url: str | None = None,
        transport: JsonTransport | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._gateway_url = gateway_url.rstrip("/") if gateway_url else None
        self._transport = transport or HttpxTransport()
        self._retry = retry or RetryPolicy()

    def resolve(self, uri: str) -> str:
        parsed = urlparse(uri)
        if parsed.scheme in ("http", "https"):
            return uri
        if parsed.scheme == "ipfs":
            if self._gateway_url is None:
                raise ValueError("ipfs:// locators require a gateway_url")
            return f"{self._gateway_url}/ipfs/{uri[len('ipfs://'):]}"
        raise ValueError(f"HttpStorage cannot resolve uri scheme {parsed.scheme!r}")

    async def retrieve(self, locator: ContentLocator) -> bytes:
        url = self.resolve(locator.uri)
        return await call_with_retry(
            lambda: self._transport.get_bytes(url),
            self._retry,
            what=f"retrieve {url}",
        )

    def locator_digest(self, locator: ContentLocator) -> Digest:
        # Content-addressed: the locator's digest is the gateway's claim.
        return locator.digest


# =========================================================================
# Routing
# =========================================================================


class RoutingStorage:
    """Dispatches each locator to a backend by URI scheme.

    ``file://`` and bare paths go to FileStorage. ``http``, ``https`` and
    ``ipfs`` go to HttpStorage.
    """

    def __init__(
        self,
        file_storage: FileStorage | None = None,
        http_storage: HttpStorage | None = None,
    ) -> None:
        self._file = file_storage or FileStorage()
        self._http = http_storage or HttpStorage()

    def _backend(self, locator: ContentLocator) -> StorageBackend:
        scheme = urlparse(locator.uri).scheme
        if scheme in ("", "file"):
            return self._file
        return self._http

    async def retrieve(self, locator: ContentLocator) -> bytes:
        return await self._backend(locator).retrieve(locator)

    def locator_digest(self, locator: ContentLocator) -> Digest:
        return self._backend(locator).locator_digest(locator)
