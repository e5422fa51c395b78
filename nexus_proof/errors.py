"""
Error taxonomy for the attestation engine.

Two layers, kept deliberately separate:

    - ``StageError`` values describe *expected* failures (an oracle
      rejected a request, a ledger never confirmed, quorum became
      unreachable). They ride on result objects and are never raised
      inside the pipeline.
    - ``ProofEngineError`` subclasses are raised for faults that must
      stop the caller (integrity faults), for transient network errors
      the retry layer absorbs, and by ``unwrap()`` helpers when a caller
      explicitly asks for exception-style handling.

Error kinds:
    INTEGRITY_FAULT     non-deterministic hash, checksum mismatch. Fatal.
    TRANSIENT_NETWORK   timeouts, connection errors, 5xx. Retried.
    VALIDATION          bad signature, digest mismatch, malformed report.
    QUORUM_UNREACHABLE  enough ledgers failed that k can no longer be met.
    TIMEOUT             the request's wall-clock ceiling was exceeded.
    CANCELLED           the caller cancelled an in-flight request.

Classification helpers map transport-level outcomes onto these kinds.
Mapping is coarse and conservative: anything not positively known to be
transient is treated as terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from nexus_proof.artifact import ProofArtifact


class ErrorKind(StrEnum):
    """Top-level error categories."""

    INTEGRITY_FAULT = "INTEGRITY_FAULT"
    TRANSIENT_NETWORK = "TRANSIENT_NETWORK"
    VALIDATION = "VALIDATION"
    QUORUM_UNREACHABLE = "QUORUM_UNREACHABLE"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"


# =========================================================================
# StageError (value)
# =========================================================================


@dataclass(frozen=True)
class StageError:
    """Structured description of a failure at one pipeline stage.

    Attributes:
        kind: Error category.
        stage: Pipeline stage that failed (e.g. "oracle.validate").
        field: The specific field that failed, when one applies.
        expected: Expected value (stringified), when applicable.
        actual: Observed value (stringified), when applicable.
        detail: Human-readable detail.
    """

    kind: ErrorKind
    stage: str
    field: str | None = None
    expected: str | None = None
    actual: str | None = None
    detail: str | None = None

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {"kind": self.kind.value, "stage": self.stage}
        if self.field is not None:
            result["field"] = self.field
        if self.expected is not None:
            result["expected"] = self.expected
        if self.actual is not None:
            result["actual"] = self.actual
        if self.detail is not None:
            result["detail"] = self.detail
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StageError:
        return cls(
            kind=ErrorKind(data["kind"]),
            stage=data["stage"],
            field=data.get("field"),
            expected=data.get("expected"),
            actual=data.get("actual"),
            detail=data.get("detail"),
        )

    def describe(self) -> str:
        parts = [f"{self.kind.value} at {self.stage}"]
        if self.field is not None:
            parts.append(f"field={self.field}")
        if self.expected is not None or self.actual is not None:
            parts.append(f"expected={self.expected!r} actual={self.actual!r}")
        if self.detail:
            parts.append(self.detail)
        return "; ".join(parts)


# =========================================================================
# Exceptions
# =========================================================================


class ProofEngineError(Exception):
    """Base class for all engine exceptions."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, *, error: StageError | None = None) -> None:
        super().__init__(message)
        self.error = error


class IntegrityFault(ProofEngineError):
    """A determinism or checksum invariant was violated. Never retried."""

    kind = ErrorKind.INTEGRITY_FAULT


class TransientNetworkError(ProofEngineError):
    """A retryable failure talking to an external service."""

    kind = ErrorKind.TRANSIENT_NETWORK


class ValidationError(ProofEngineError):
    """Untrusted input failed validation. Terminal for the request."""

    kind = ErrorKind.VALIDATION


class CanonicalizationError(ValidationError, ValueError):
    """Metadata contains a value that has no canonical JSON form."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            f"cannot canonicalize {path}: {reason}",
            error=StageError(
                kind=ErrorKind.VALIDATION,
                stage="canonicalize",
                field=path,
                detail=reason,
            ),
        )
        self.path = path
        self.reason = reason


class QuorumUnreachableError(ProofEngineError):
    """Too many ledgers failed for quorum to be met.

    The negative artifact documenting the failure is attached.
    """

    kind = ErrorKind.QUORUM_UNREACHABLE

    def __init__(
        self,
        message: str,
        *,
        error: StageError | None = None,
        artifact: ProofArtifact | None = None,
    ) -> None:
        super().__init__(message, error=error)
        self.artifact = artifact


class WallClockTimeoutError(ProofEngineError):
    """The request's overall wall-clock ceiling was exceeded."""

    kind = ErrorKind.TIMEOUT


class CancelledAttestationError(ProofEngineError):
    """The caller cancelled the request before it reached a verdict."""

    kind = ErrorKind.CANCELLED


_KIND_TO_EXCEPTION: dict[ErrorKind, type[ProofEngineError]] = {
    ErrorKind.INTEGRITY_FAULT: IntegrityFault,
    ErrorKind.TRANSIENT_NETWORK: TransientNetworkError,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.QUORUM_UNREACHABLE: QuorumUnreachableError,
    ErrorKind.TIMEOUT: WallClockTimeoutError,
    ErrorKind.CANCELLED: CancelledAttestationError,
}


def exception_for(error: StageError) -> ProofEngineError:
    """Build the exception matching a StageError's kind."""
    exc_type = _KIND_TO_EXCEPTION[error.kind]
    return exc_type(error.describe(), error=error)


# =========================================================================
# Classification
# =========================================================================

# Status codes worth another attempt. Everything else >= 400 is terminal.
_TRANSIENT_STATUS = frozenset({408, 425, 429})


def classify_http_status(status_code: int) -> ErrorKind | None:
    """Map an HTTP status code to an error kind.

    Returns:
        None for 2xx/3xx, TRANSIENT_NETWORK for 5xx and 408/425/429,
        VALIDATION for any other 4xx.
    """
    if status_code < 400:
        return None
    if status_code >= 500 or status_code in _TRANSIENT_STATUS:
        return ErrorKind.TRANSIENT_NETWORK
    return ErrorKind.VALIDATION


def classify_exception(exc: BaseException) -> ErrorKind:
    """Classify an exception raised by a transport or client call.

    Timeouts and connection-level failures are transient. httpx is
    imported lazily so callers that never touch HTTP don't need it.
    """
    if isinstance(exc, ProofEngineError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return ErrorKind.TRANSIENT_NETWORK
    import httpx

    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return ErrorKind.TRANSIENT_NETWORK
    if isinstance(exc, httpx.HTTPStatusError):
        kind = classify_http_status(exc.response.status_code)
        return kind or ErrorKind.VALIDATION
    return ErrorKind.VALIDATION
