"""
Attestation engine: the API boundary.

Two operations:

    attest(locator, metadata) -> AttestationResult
        1. Retrieve the content and re-hash it. The locator's digest, the
           storage backend's digest and the bytes must agree, else
           IntegrityFault.
        2. Derive the document identity (content, metadata).
        3. Drive an oracle request to a terminal state.
        4. Track the report's relay transactions across every configured
           ledger until the quorum is decided.
        5. Assemble a checksummed artifact (positive or negative).

    verify(artifact, content, metadata) -> VerificationReport
        Replays every stage read-only. See verifier.py.

Expected failures (oracle rejection, deadline, quorum unreachable) come
back as ``AttestationResult.error``. Faults raise. ``unwrap()`` converts
a result into the artifact or the matching exception.

The engine holds no global state. Clients are constructed by the caller
(or by ``from_config``) and passed in.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from nexus_proof.artifact import ProofArtifact, assemble
from nexus_proof.config import EngineConfig
from nexus_proof.errors import (
    ErrorKind,
    IntegrityFault,
    QuorumUnreachableError,
    StageError,
    exception_for,
)
from nexus_proof.integrity import Digest, derive_identity
from nexus_proof.ledger.client import LedgerClient
from nexus_proof.ledger.jsonrpc_client import client_for
from nexus_proof.ledger.quorum import AggregateStatus, ChainStatus
from nexus_proof.ledger.tracker import ConfirmationTracker
from nexus_proof.oracle.attester import OracleAttester
from nexus_proof.oracle.client import OracleClient
from nexus_proof.oracle.http_client import HttpOracleClient
from nexus_proof.oracle.request import AttestationRequest, RequestState
from nexus_proof.oracle.signing import OracleKeyring
from nexus_proof.storage import ContentLocator, HttpStorage, RoutingStorage, StorageBackend
from nexus_proof.transport import JsonTransport
from nexus_proof.verifier import VerificationReport, Verifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttestationResult:
    """Outcome of one attest() call.

    Attributes:
        document_id: Derived identity.
        request: The oracle request, in its terminal state.
        artifact: Assembled artifact. None if the oracle never produced
            a valid report.
        error: Why the attestation did not succeed. None on success and
            on an operator cutoff.
    """

    document_id: Digest
    request: AttestationRequest
    artifact: ProofArtifact | None = None
    error: StageError | None = None

    @property
    def ok(self) -> bool:
        return (
            self.artifact is not None
            and self.artifact.aggregate_status == AggregateStatus.CONFIRMED
        )

    @property
    def stale(self) -> bool:
        return self.request.stale

    def unwrap(self) -> ProofArtifact:
        """Return the artifact or raise the exception matching ``error``.

        Raises:
            QuorumUnreachableError: Negative artifact (attached).
            WallClockTimeoutError: Oracle deadline or retry budget exceeded.
            ValidationError: Oracle rejected the request or its report.
            CancelledAttestationError: Request was cancelled.
        """
        if self.error is not None:
            if self.error.kind == ErrorKind.QUORUM_UNREACHABLE:
                raise QuorumUnreachableError(
                    self.error.describe(), error=self.error, artifact=self.artifact
                )
            if self.request.state == RequestState.TIMED_OUT:
                raise exception_for(
                    StageError(
                        kind=ErrorKind.TIMEOUT,
                        stage=self.error.stage,
                        detail=self.error.describe(),
                    )
                )
            raise exception_for(self.error)
        assert self.artifact is not None
        return self.artifact

    def to_dict(self) -> dict[str, object]:
        return {
            "document_id": self.document_id.prefixed,
            "ok": self.ok,
            "stale": self.stale,
            "request": self.request.to_dict(),
            "artifact": self.artifact.to_dict() if self.artifact else None,
            "error": self.error.to_dict() if self.error else None,
        }


class AttestationEngine:
    """Creates and verifies proof artifacts.

    Args:
        config: Engine configuration.
        oracle_client: Oracle network client.
        ledger_clients: chain_id -> LedgerClient for every configured ledger.
        storage: Storage collaborator for content retrieval.
        keyring: Trusted oracle keys. Defaults to config.oracle.authorized_keys.
        now_fn: Clock for oracle staleness checks.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        oracle_client: OracleClient,
        ledger_clients: Mapping[str, LedgerClient],
        storage: StorageBackend,
        keyring: OracleKeyring | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._ledger_clients = dict(ledger_clients)
        self._storage = storage
        self._keyring = keyring or OracleKeyring(config.oracle.authorized_keys)
        self._attester = OracleAttester(oracle_client, self._keyring, config.oracle, now_fn)
        self._active: set[ConfirmationTracker] = set()
        self._verifier = Verifier(
            self._keyring,
            config.ledgers,
            self._ledger_clients,
            quorum=config.effective_quorum,
            storage=storage,
        )

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        *,
        transport: JsonTransport | None = None,
    ) -> AttestationEngine:
        """Build an engine with HTTP clients for every configured endpoint.

        Raises:
            ValueError: If the oracle or a ledger has no url.
        """
        if config.oracle.base_url is None:
            raise ValueError("oracle.base_url is required to build an HTTP client")
        return cls(
            config,
            oracle_client=HttpOracleClient(config.oracle.base_url, transport),
            ledger_clients={
                ledger.chain_id: client_for(ledger, transport) for ledger in config.ledgers
            },
            storage=RoutingStorage(
                http_storage=HttpStorage(
                    config.storage_gateway_url, transport, config.storage_retry
                ),
            ),
        )

    @property
    def config(self) -> EngineConfig:
        return self._config

    def notify(self, request_id: str) -> None:
        """Early-poll hook for oracle push notifications."""
        self._attester.notify(request_id)

    def cutoff(self) -> None:
        """Stop every in-flight confirmation tracking with a forced artifact."""
        for tracker in list(self._active):
            tracker.cutoff()

    # -----------------------------------------------------------------
    # attest
    # -----------------------------------------------------------------

    async def attest(self, locator: ContentLocator, metadata: Any) -> AttestationResult:
        """Attest the content behind ``locator`` together with ``metadata``.

        Raises:
            IntegrityFault: Content bytes don't match the locator digest,
                or canonicalization was non-deterministic.
            CanonicalizationError: Metadata has no canonical JSON form.
        """
        content = await self._storage.retrieve(locator)
        identity = derive_identity(content, metadata)
        self._check_locator(locator, identity.content_digest)
        document_id = identity.document_id

        logger.info(
            "Attesting %s",
            document_id.prefixed,
            extra={"document_id": document_id.prefixed, "uri": locator.uri},
        )

        request = await self._attester.attest(document_id, locator)
        if request.state != RequestState.FINALIZED:
            return AttestationResult(
                document_id=document_id, request=request, error=request.error
            )
        report = request.report
        assert report is not None

        tracker = ConfirmationTracker(
            self._config.ledgers,
            self._ledger_clients,
            quorum=self._config.effective_quorum,
            wait_for_all=self._config.wait_for_all,
        )
        self._active.add(tracker)
        try:
            outcome = await tracker.run(report.relays)
        finally:
            self._active.discard(tracker)

        artifact = assemble(
            document_id,
            locator,
            identity.metadata_digest,
            report,
            outcome.confirmations,
            outcome.aggregate,
            quorum=outcome.quorum,
            forced=outcome.aggregate == AggregateStatus.PENDING,
        )

        error = None
        if outcome.aggregate == AggregateStatus.FAILED:
            failed = {
                cid: record.failure_reason
                for cid, record in sorted(outcome.confirmations.items())
                if record.status == ChainStatus.FAILED
            }
            error = StageError(
                kind=ErrorKind.QUORUM_UNREACHABLE,
                stage="ledger_quorum",
                expected=f">= {outcome.quorum}",
                actual=str(len(artifact.confirmed_chains)),
                detail=", ".join(f"{cid}: {reason}" for cid, reason in failed.items()),
            )

        logger.info(
            "Artifact %s for %s (%s)",
            artifact.artifact_checksum.prefixed,
            document_id.prefixed,
            artifact.aggregate_status.value,
            extra={
                "document_id": document_id.prefixed,
                "aggregate_status": artifact.aggregate_status.value,
            },
        )
        return AttestationResult(
            document_id=document_id, request=request, artifact=artifact, error=error
        )

    def _check_locator(self, locator: ContentLocator, recomputed: Digest) -> None:
        reported = self._storage.locator_digest(locator)
        for label, claimed in (("locator", locator.digest), ("storage", reported)):
            if claimed != recomputed:
                fault = IntegrityFault(
                    f"{label} digest does not match retrieved content",
                    error=StageError(
                        kind=ErrorKind.INTEGRITY_FAULT,
                        stage="content_digest",
                        field=f"{label}.digest",
                        expected=claimed.prefixed,
                        actual=recomputed.prefixed,
                    ),
                )
                logger.error(
                    "Integrity fault: %s",
                    fault,
                    extra={"uri": locator.uri, "expected": claimed.prefixed},
                )
                raise fault

    # -----------------------------------------------------------------
    # verify
    # -----------------------------------------------------------------

    async def verify(
        self,
        artifact: ProofArtifact,
        content: bytes | None = None,
        metadata: Any = None,
    ) -> VerificationReport:
        """Independently verify an artifact. See Verifier.verify."""
        return await self._verifier.verify(artifact, content, metadata)
