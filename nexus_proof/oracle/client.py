"""
Oracle client protocol: the network boundary to the attestation oracle.

Defines the interface that the attester depends on, not a concrete
implementation. This keeps the attester testable and prevents HTTP
calls from creeping into the state machine.

Concrete implementations:
    - HttpOracleClient (JSON over HTTP)
    - FakeOracleClient (tests)

The protocol has exactly two methods:
    - submit(document_id, locator) -> SubmitResult
    - poll_status(request_id) -> PollResult

Both return boring frozen dataclasses. No exceptions for "expected"
failures (oracle refused, report still pending). Those are captured in
the result objects. Transport failures raise TransientNetworkError and
are retried by the caller.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from nexus_proof.integrity import Digest
from nexus_proof.storage import ContentLocator
from nexus_proof.timestamps import is_rfc3339_utc

_SIGNATURE_RE = re.compile(r"^[0-9a-f]{128}$")
_KEY_ID_RE = re.compile(r"^[0-9a-f]{64}$")


# =========================================================================
# OracleReport
# =========================================================================


@dataclass(frozen=True)
class OracleReport:
    """A report issued by the oracle for one attestation request.

    Untrusted until the attester validates it.

    Attributes:
        request_id: Oracle-assigned request identifier.
        reported_digest: The digest the oracle attests to.
        signature: Hex Ed25519 signature over
            canonical_json({request_id, reported_digest, issued_at}).
        issued_at: RFC3339 UTC issue time.
        finalized: Whether the oracle considers the report final.
        key_id: Hex public key of the signing oracle node.
        relays: chain_id -> transaction_ref for each ledger the report
            was relayed to. Not covered by the signature; ledgers are
            re-queried independently.
    """

    request_id: str
    reported_digest: Digest
    signature: str
    issued_at: str
    finalized: bool
    key_id: str
    relays: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.request_id:
            raise ValueError("request_id must be non-empty")
        if not _SIGNATURE_RE.match(self.signature):
            raise ValueError(
                f"signature must be 128 lowercase hex chars, got: {self.signature!r}"
            )
        if not _KEY_ID_RE.match(self.key_id):
            raise ValueError(f"key_id must be 64 lowercase hex chars, got: {self.key_id!r}")
        if not is_rfc3339_utc(self.issued_at):
            raise ValueError(
                f"issued_at must be RFC3339 UTC, got: {self.issued_at!r}"
            )

    def to_dict(self) -> dict[str, object]:
        return {
            "request_id": self.request_id,
            "reported_digest": self.reported_digest.prefixed,
            "signature": self.signature,
            "issued_at": self.issued_at,
            "finalized": self.finalized,
            "key_id": self.key_id,
            "relays": dict(sorted(self.relays.items())),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OracleReport:
        """Parse an untrusted report dict.

        Raises:
            ValueError: On any missing or malformed field.
        """
        try:
            relays = data.get("relays") or {}
            if not isinstance(relays, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in relays.items()
            ):
                raise ValueError("relays must map chain_id strings to tx ref strings")
            return cls(
                request_id=str(data["request_id"]),
                reported_digest=Digest.parse(data["reported_digest"]),
                signature=data["signature"],
                issued_at=data["issued_at"],
                finalized=bool(data.get("finalized", False)),
                key_id=data["key_id"],
                relays=dict(relays),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"malformed oracle report: {exc!r}") from exc


# =========================================================================
# Result types
# =========================================================================


@dataclass(frozen=True)
class SubmitResult:
    """Result of submitting an attestation request.

    Attributes:
        accepted: Whether the oracle accepted the request.
        request_id: Oracle-assigned identifier. None if not accepted.
        error_code: Oracle's machine-readable refusal reason.
        detail: Human-readable detail for diagnostics.
    """

    accepted: bool
    request_id: str | None = None
    error_code: str | None = None
    detail: str | None = None


@dataclass(frozen=True)
class PollResult:
    """Result of polling a request's status.

    Exactly one of these holds:
        - pending: ``finalized`` False, ``report`` None, ``error_code`` None.
        - finalized: ``finalized`` True and ``report`` set.
        - refused: ``error_code`` set (oracle rejected the request, or the
          report could not be parsed).

    Attributes:
        finalized: Whether a final report is available.
        report: The parsed report, when finalized.
        error_code: Machine-readable refusal reason.
        detail: Human-readable detail for diagnostics.
    """

    finalized: bool = False
    report: OracleReport | None = None
    error_code: str | None = None
    detail: str | None = None

    @property
    def pending(self) -> bool:
        return not self.finalized and self.error_code is None


# =========================================================================
# Protocol
# =========================================================================


@runtime_checkable
class OracleClient(Protocol):
    """Interface for oracle network operations.

    Methods are async because network I/O is inherently asynchronous.
    Implementations raise TransientNetworkError for retryable transport
    failures and never retry internally.
    """

    async def submit(self, document_id: Digest, locator: ContentLocator) -> SubmitResult:
        """Submit an attestation request for a document."""
        ...

    async def poll_status(self, request_id: str) -> PollResult:
        """Fetch the current status of a previously submitted request."""
        ...
