"""
Independent verification of proof artifacts.

Replays every creation stage read-only, trusting nothing the artifact
says about itself except what it claims to have attested.

Checks (in order):
    1. artifact_checksum  recompute over canonical JSON minus the checksum
    2. content_digest     hash the content bytes, compare to the locator
    3. metadata_digest    recompute from supplied metadata (skipped if none)
    4. document_id        sha256(content || metadata), compare
    5. oracle_signature   verify against the verifier's own keyring
    6. oracle_digest      report.reported_digest == recomputed document_id
    7. aggregate_status   recorded aggregate is confirmed and matches the
                          quorum over the recorded chain statuses
    8. ledger:<chain_id>  re-query each recorded chain live
    9. ledger_quorum      live confirmed chains >= the verifier's k

Every check runs even if earlier ones fail, so the operator gets a
complete picture rather than the first failure.

Ledger checks:
    A chain the artifact records as confirmed must still be confirmed
    at the verifier's required depth. Chains recorded as anything else
    are reported as advisory and never fail the verdict on their own.

Verdict:
    VERIFIED iff every non-advisory, non-skipped check passed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from nexus_proof.artifact import ProofArtifact
from nexus_proof.config import LedgerConfig, RetryPolicy, default_quorum
from nexus_proof.errors import ProofEngineError
from nexus_proof.integrity import (
    Digest,
    assemble_document_id,
    content_digest,
    metadata_digest,
)
from nexus_proof.ledger.client import LedgerClient
from nexus_proof.ledger.quorum import AggregateStatus, ChainStatus, aggregate_status
from nexus_proof.ledger.tracker import ChainConfirmation
from nexus_proof.oracle.signing import OracleKeyring
from nexus_proof.retry import call_with_retry
from nexus_proof.storage import StorageBackend

logger = logging.getLogger(__name__)

VERIFY_ARTIFACT_CHECKSUM = "artifact_checksum"
VERIFY_CONTENT_DIGEST = "content_digest"
VERIFY_METADATA_DIGEST = "metadata_digest"
VERIFY_DOCUMENT_ID = "document_id"
VERIFY_ORACLE_SIGNATURE = "oracle_signature"
VERIFY_ORACLE_DIGEST = "oracle_digest"
VERIFY_AGGREGATE_STATUS = "aggregate_status"
VERIFY_LEDGER_QUORUM = "ledger_quorum"


def ledger_check_name(chain_id: str) -> str:
    return f"ledger:{chain_id}"


class Verdict(StrEnum):
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class VerificationCheck:
    """Single verification check result."""

    name: str
    ok: bool
    expected: str | None = None
    actual: str | None = None
    detail: str | None = None
    advisory: bool = False
    skipped: bool = False

    @property
    def counts(self) -> bool:
        return not self.advisory and not self.skipped

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {"name": self.name, "ok": self.ok}
        if not self.ok:
            if self.expected is not None:
                result["expected"] = self.expected
            if self.actual is not None:
                result["actual"] = self.actual
        if self.detail is not None:
            result["detail"] = self.detail
        if self.advisory:
            result["advisory"] = True
        if self.skipped:
            result["skipped"] = True
        return result


@dataclass(frozen=True)
class VerificationReport:
    """Result of verifying one artifact."""

    verdict: Verdict
    document_id: str
    checks: tuple[VerificationCheck, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.verdict == Verdict.VERIFIED

    @property
    def failed_stages(self) -> list[str]:
        return [c.name for c in self.checks if c.counts and not c.ok]

    def check(self, name: str) -> VerificationCheck | None:
        for c in self.checks:
            if c.name == name:
                return c
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "verdict": self.verdict.value,
            "document_id": self.document_id,
            "checks": [c.to_dict() for c in self.checks],
            "failed_stages": self.failed_stages,
            "passed": sum(1 for c in self.checks if c.ok),
            "failed": sum(1 for c in self.checks if not c.ok),
            "total": len(self.checks),
        }


# =========================================================================
# Verifier
# =========================================================================


class Verifier:
    """Re-verifies artifacts against live ledgers and a trusted keyring.

    Args:
        keyring: Oracle keys this verifier trusts. Keys embedded in the
            artifact are never used.
        ledgers: The verifier's own ledger configuration (required depth,
            retries).
        clients: chain_id -> LedgerClient.
        quorum: k. Defaults to a simple majority of ``ledgers``.
        storage: Used to fetch content when no bytes are passed in.
    """

    def __init__(
        self,
        keyring: OracleKeyring,
        ledgers: Sequence[LedgerConfig],
        clients: Mapping[str, LedgerClient],
        *,
        quorum: int | None = None,
        storage: StorageBackend | None = None,
    ) -> None:
        self._keyring = keyring
        self._ledgers = {ledger.chain_id: ledger for ledger in ledgers}
        self._clients = dict(clients)
        self._quorum = quorum if quorum is not None else default_quorum(max(len(ledgers), 1))
        self._storage = storage

    async def verify(
        self,
        artifact: ProofArtifact,
        content: bytes | None = None,
        metadata: Any = None,
    ) -> VerificationReport:
        """Verify ``artifact``.

        Args:
            artifact: Artifact to verify. Load it with ``strict=False`` to
                get a checksum mismatch reported as a failed check.
            content: Content bytes. Fetched via the locator when omitted.
            metadata: The original metadata. When None, the metadata
                stage is skipped and the artifact's recorded digest is
                used to re-derive the document id.
        """
        checks: list[VerificationCheck] = []

        # 1. Artifact checksum
        recomputed_checksum = artifact.compute_checksum()
        checks.append(VerificationCheck(
            name=VERIFY_ARTIFACT_CHECKSUM,
            ok=recomputed_checksum == artifact.artifact_checksum,
            expected=artifact.artifact_checksum.prefixed,
            actual=recomputed_checksum.prefixed,
            detail="Recomputed over canonical JSON minus the checksum",
        ))

        # 2. Content digest
        content_check, recomputed_content = await self._check_content(artifact, content)
        checks.append(content_check)

        # 3. Metadata digest
        metadata_check, used_metadata = self._check_metadata(artifact, metadata)
        checks.append(metadata_check)

        # 4. Document id
        recomputed_id: Digest | None = None
        if recomputed_content is not None and used_metadata is not None:
            recomputed_id = assemble_document_id(recomputed_content, used_metadata)
            checks.append(VerificationCheck(
                name=VERIFY_DOCUMENT_ID,
                ok=recomputed_id == artifact.document_id,
                expected=artifact.document_id.prefixed,
                actual=recomputed_id.prefixed,
                detail=(
                    "Re-derived from content and the artifact's metadata digest"
                    if metadata_check.skipped
                    else "Re-derived from content and metadata"
                ),
            ))
        else:
            checks.append(VerificationCheck(
                name=VERIFY_DOCUMENT_ID,
                ok=False,
                expected=artifact.document_id.prefixed,
                detail="Cannot re-derive without content and metadata digests",
            ))

        # 5. Oracle signature
        report = artifact.oracle_report
        signature_ok = self._keyring.verify(report)
        if signature_ok:
            signature_detail = "Signed by an authorized oracle key"
        elif report.key_id in self._keyring:
            signature_detail = "Signature does not verify"
        else:
            signature_detail = "key_id is not in the verifier's keyring"
        checks.append(VerificationCheck(
            name=VERIFY_ORACLE_SIGNATURE,
            ok=signature_ok,
            actual=report.key_id,
            detail=signature_detail,
        ))

        # 6. Oracle digest
        target = recomputed_id or artifact.document_id
        checks.append(VerificationCheck(
            name=VERIFY_ORACLE_DIGEST,
            ok=report.reported_digest == target,
            expected=target.prefixed,
            actual=report.reported_digest.prefixed,
            detail="Oracle report must attest to this document id",
        ))

        # 7. Recorded aggregate
        checks.append(_check_aggregate(artifact))

        # 8. Ledgers, concurrently
        chain_ids = sorted(artifact.chain_confirmations)
        ledger_checks = await asyncio.gather(*(
            self._check_ledger(artifact.chain_confirmations[cid]) for cid in chain_ids
        ))
        checks.extend(ledger_checks)

        # 9. Quorum
        live_confirmed = sum(
            1 for c in ledger_checks if c.ok
        )
        checks.append(VerificationCheck(
            name=VERIFY_LEDGER_QUORUM,
            ok=live_confirmed >= self._quorum,
            expected=f">= {self._quorum}",
            actual=str(live_confirmed),
            detail=f"{live_confirmed} of {len(ledger_checks)} chains confirmed live",
        ))

        verdict = (
            Verdict.VERIFIED
            if all(c.ok for c in checks if c.counts)
            else Verdict.FAILED
        )
        result = VerificationReport(
            verdict=verdict,
            document_id=artifact.document_id.prefixed,
            checks=tuple(checks),
        )
        logger.info(
            "Verified %s: %s",
            artifact.document_id.prefixed,
            verdict.value,
            extra={
                "document_id": artifact.document_id.prefixed,
                "verdict": verdict.value,
                "failed_stages": result.failed_stages,
            },
        )
        return result

    # -----------------------------------------------------------------
    # Stages
    # -----------------------------------------------------------------

    async def _check_content(
        self, artifact: ProofArtifact, content: bytes | None
    ) -> tuple[VerificationCheck, Digest | None]:
        expected = artifact.content_locator.digest
        if content is None:
            if self._storage is None:
                return VerificationCheck(
                    name=VERIFY_CONTENT_DIGEST,
                    ok=False,
                    expected=expected.prefixed,
                    detail="No content supplied and no storage backend configured",
                ), None
            try:
                content = await self._storage.retrieve(artifact.content_locator)
            except (ProofEngineError, OSError, ValueError) as exc:
                return VerificationCheck(
                    name=VERIFY_CONTENT_DIGEST,
                    ok=False,
                    expected=expected.prefixed,
                    detail=f"Could not retrieve content: {exc}",
                ), None

        recomputed = content_digest(content)
        return VerificationCheck(
            name=VERIFY_CONTENT_DIGEST,
            ok=recomputed == expected,
            expected=expected.prefixed,
            actual=recomputed.prefixed,
            detail="Recomputed from content bytes",
        ), recomputed

    def _check_metadata(
        self, artifact: ProofArtifact, metadata: Any
    ) -> tuple[VerificationCheck, Digest | None]:
        recorded = artifact.metadata_digest
        if metadata is None:
            return VerificationCheck(
                name=VERIFY_METADATA_DIGEST,
                ok=True,
                expected=recorded.prefixed,
                detail="Metadata not supplied; using the artifact's recorded digest",
                skipped=True,
            ), recorded

        try:
            recomputed = metadata_digest(metadata)
        except ProofEngineError as exc:
            return VerificationCheck(
                name=VERIFY_METADATA_DIGEST,
                ok=False,
                expected=recorded.prefixed,
                detail=str(exc),
            ), None
        return VerificationCheck(
            name=VERIFY_METADATA_DIGEST,
            ok=recomputed == recorded,
            expected=recorded.prefixed,
            actual=recomputed.prefixed,
            detail="Recomputed from canonical metadata",
        ), recomputed

    async def _check_ledger(self, record: ChainConfirmation) -> VerificationCheck:
        name = ledger_check_name(record.chain_id)
        advisory = record.status != ChainStatus.CONFIRMED
        config = self._ledgers.get(record.chain_id)
        client = self._clients.get(record.chain_id)
        required_depth = config.required_depth if config else record.required_depth

        if client is None:
            return VerificationCheck(
                name=name,
                ok=False,
                expected=f">= {required_depth} confirmations",
                detail="No ledger client configured for this chain",
                advisory=advisory,
            )
        if record.transaction_ref is None:
            return VerificationCheck(
                name=name,
                ok=False,
                detail=f"No relay transaction recorded ({record.failure_reason})",
                advisory=advisory,
            )

        transaction_ref = record.transaction_ref
        try:
            status = await call_with_retry(
                lambda: client.get_transaction_status(transaction_ref),
                config.retry if config else RetryPolicy(),
                what=f"verify {record.chain_id}",
            )
        except ProofEngineError as exc:
            return VerificationCheck(
                name=name,
                ok=False,
                expected=f">= {required_depth} confirmations",
                detail=f"Live query failed: {exc}",
                advisory=advisory,
            )

        live_ok = (
            status.found
            and status.error_code is None
            and not status.reverted
            and status.confirmation_count >= required_depth
        )
        if status.error_code is not None:
            detail = f"Node error {status.error_code}"
        elif not status.found:
            detail = "Transaction not found"
        elif status.reverted:
            detail = "Transaction reverted"
        else:
            detail = f"Recorded {record.status.value} at block {record.block_height}"
            if status.block_height != record.block_height:
                detail += f", now at block {status.block_height}"
        if advisory:
            detail += " (advisory: artifact does not claim this chain)"

        return VerificationCheck(
            name=name,
            ok=live_ok,
            expected=f">= {required_depth} confirmations",
            actual=str(status.confirmation_count),
            detail=detail,
            advisory=advisory,
        )


def _check_aggregate(artifact: ProofArtifact) -> VerificationCheck:
    """The recorded outcome must be a confirmation the recorded chains support."""
    recorded = artifact.aggregate_status
    try:
        recomputed = aggregate_status(
            (record.status for record in artifact.chain_confirmations.values()),
            artifact.quorum,
        )
    except ValueError as exc:
        return VerificationCheck(
            name=VERIFY_AGGREGATE_STATUS,
            ok=False,
            expected=AggregateStatus.CONFIRMED.value,
            actual=recorded.value,
            detail=str(exc),
        )

    if recomputed != recorded:
        detail = (
            f"Recorded {recorded.value} but the recorded chains give "
            f"{recomputed.value} at quorum {artifact.quorum}"
        )
    elif recorded != AggregateStatus.CONFIRMED:
        detail = f"Artifact records a {recorded.value} attestation"
    else:
        detail = (
            f"{len(artifact.confirmed_chains)} of "
            f"{len(artifact.chain_confirmations)} chains recorded confirmed"
        )
    return VerificationCheck(
        name=VERIFY_AGGREGATE_STATUS,
        ok=recomputed == recorded == AggregateStatus.CONFIRMED,
        expected=AggregateStatus.CONFIRMED.value,
        actual=recorded.value,
        detail=detail,
    )
