"""
Proof artifacts: the self-checksummed output of an attestation.

An artifact binds a document identity to a validated oracle report and
the per-ledger confirmation records, under a quorum verdict.

Checksum:
    artifact_checksum = sha256(canonical_json(artifact minus checksum))

    Every field except the checksum contributes. Identical inputs give a
    byte-identical artifact, so the checksum doubles as a stable id for
    the artifact itself.

Version immutability:
    The set of fields covered by the checksum is frozen for a given
    artifact_version. Changing it requires a new version and a new
    schema file.

Rules:
    - assemble() never mutates its inputs.
    - A pending aggregate is refused unless ``forced`` (operator cutoff).
    - A failed aggregate still yields an artifact: a negative proof.
    - from_dict() validates against the bundled schema once, at the
      boundary.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from nexus_proof.canonical_json import canonical_json, canonical_json_bytes
from nexus_proof.config import load_schema, validate
from nexus_proof.errors import ErrorKind, IntegrityFault, StageError
from nexus_proof.integrity import Digest, DocumentId, hash_bytes
from nexus_proof.ledger.quorum import AggregateStatus, ChainStatus
from nexus_proof.ledger.tracker import ChainConfirmation
from nexus_proof.oracle.client import OracleReport
from nexus_proof.storage import ContentLocator
from nexus_proof.timestamps import now_utc

ARTIFACT_VERSION = "0.1"
ARTIFACT_SCHEMA = "proof.artifact.v0.1.json"

_SCHEMA: dict[str, Any] | None = None


def _artifact_schema() -> dict[str, Any]:
    global _SCHEMA
    if _SCHEMA is None:
        _SCHEMA = load_schema(ARTIFACT_SCHEMA)
    return _SCHEMA


@dataclass(frozen=True)
class ProofArtifact:
    """A verifiable record of one attestation.

    Attributes:
        artifact_version: Format version.
        document_id: sha256(content_digest || metadata_digest).
        content_locator: Where the attested bytes live.
        metadata_digest: Digest of the canonical metadata.
        oracle_report: The validated oracle report.
        chain_confirmations: chain_id -> recorded confirmation state.
        aggregate_status: Quorum outcome.
        quorum: Number of ledgers required to confirm.
        created_at: RFC3339 UTC assembly time.
        artifact_checksum: Digest over every other field.
    """

    artifact_version: str
    document_id: DocumentId
    content_locator: ContentLocator
    metadata_digest: Digest
    oracle_report: OracleReport
    chain_confirmations: dict[str, ChainConfirmation]
    aggregate_status: AggregateStatus
    quorum: int
    created_at: str
    artifact_checksum: Digest

    def payload_dict(self) -> dict[str, object]:
        """Every field except the checksum."""
        return {
            "artifact_version": self.artifact_version,
            "document_id": self.document_id.prefixed,
            "content_locator": self.content_locator.to_dict(),
            "metadata_digest": self.metadata_digest.prefixed,
            "oracle_report": self.oracle_report.to_dict(),
            "chain_confirmations": {
                cid: record.to_dict()
                for cid, record in sorted(self.chain_confirmations.items())
            },
            "aggregate_status": self.aggregate_status.value,
            "quorum": self.quorum,
            "created_at": self.created_at,
        }

    def to_dict(self) -> dict[str, object]:
        result = self.payload_dict()
        result["artifact_checksum"] = self.artifact_checksum.prefixed
        return result

    def to_canonical_json(self) -> str:
        return canonical_json(self.to_dict())

    def compute_checksum(self) -> Digest:
        return compute_checksum(self.payload_dict())

    @property
    def checksum_ok(self) -> bool:
        return self.compute_checksum() == self.artifact_checksum

    @property
    def confirmed_chains(self) -> list[str]:
        return sorted(
            cid for cid, record in self.chain_confirmations.items()
            if record.status == ChainStatus.CONFIRMED
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, strict: bool = True) -> ProofArtifact:
        """Validate and load an artifact.

        Args:
            data: Parsed artifact JSON.
            strict: Raise if the stored checksum doesn't match. Verifiers
                pass False so the mismatch shows up as a failed check.

        Raises:
            jsonschema.ValidationError: If the document doesn't match the schema.
            IntegrityFault: If strict and the checksum doesn't match.
        """
        validate(data, _artifact_schema())
        artifact = cls(
            artifact_version=data["artifact_version"],
            document_id=Digest.parse(data["document_id"]),
            content_locator=ContentLocator.from_dict(data["content_locator"]),
            metadata_digest=Digest.parse(data["metadata_digest"]),
            oracle_report=OracleReport.from_dict(data["oracle_report"]),
            chain_confirmations={
                cid: ChainConfirmation.from_dict(record)
                for cid, record in data["chain_confirmations"].items()
            },
            aggregate_status=AggregateStatus(data["aggregate_status"]),
            quorum=data["quorum"],
            created_at=data["created_at"],
            artifact_checksum=Digest.parse(data["artifact_checksum"]),
        )
        if strict:
            recomputed = artifact.compute_checksum()
            if recomputed != artifact.artifact_checksum:
                raise IntegrityFault(
                    "artifact checksum mismatch",
                    error=StageError(
                        kind=ErrorKind.INTEGRITY_FAULT,
                        stage="artifact_checksum",
                        field="artifact_checksum",
                        expected=artifact.artifact_checksum.prefixed,
                        actual=recomputed.prefixed,
                    ),
                )
        return artifact

    @classmethod
    def from_json(cls, text: str | bytes, *, strict: bool = True) -> ProofArtifact:
        return cls.from_dict(json.loads(text), strict=strict)


def compute_checksum(payload: Mapping[str, object]) -> Digest:
    """sha256 over the canonical JSON of an artifact payload."""
    return hash_bytes(canonical_json_bytes(dict(payload)))


def assemble(
    document_id: DocumentId,
    locator: ContentLocator,
    metadata_digest: Digest,
    report: OracleReport,
    confirmations: Mapping[str, ChainConfirmation],
    aggregate_status: AggregateStatus,
    *,
    quorum: int,
    created_at: str | None = None,
    forced: bool = False,
) -> ProofArtifact:
    """Build a checksummed ProofArtifact.

    Args:
        document_id: The attested identity.
        locator: Content locator submitted to the oracle.
        metadata_digest: Digest of the canonical metadata.
        report: Validated oracle report for ``document_id``.
        confirmations: chain_id -> final recorded confirmation.
        aggregate_status: Quorum outcome.
        quorum: k.
        created_at: Assembly time. Defaults to now.
        forced: Allow a pending aggregate (operator cutoff).

    Raises:
        ValueError: If the aggregate is pending and not forced, the
            report is for a different document, or quorum is out of range.
    """
    if aggregate_status == AggregateStatus.PENDING and not forced:
        raise ValueError("refusing to assemble a pending artifact without forced=True")
    if report.reported_digest != document_id:
        raise ValueError(
            f"report digest {report.reported_digest} does not match document {document_id}"
        )
    if not 1 <= quorum <= len(confirmations):
        raise ValueError(
            f"quorum must be between 1 and {len(confirmations)}, got: {quorum}"
        )

    payload: dict[str, object] = {
        "artifact_version": ARTIFACT_VERSION,
        "document_id": document_id.prefixed,
        "content_locator": locator.to_dict(),
        "metadata_digest": metadata_digest.prefixed,
        "oracle_report": report.to_dict(),
        "chain_confirmations": {
            cid: record.to_dict() for cid, record in sorted(confirmations.items())
        },
        "aggregate_status": AggregateStatus(aggregate_status).value,
        "quorum": quorum,
        "created_at": created_at or now_utc(),
    }
    payload["artifact_checksum"] = compute_checksum(payload).prefixed
    # Round-trip through from_dict so the returned object is exactly what
    # a verifier would load.
    return ProofArtifact.from_dict(payload)


def save_artifact(artifact: ProofArtifact, path: str | Path) -> None:
    Path(path).write_text(artifact.to_canonical_json(), encoding="utf-8")


def load_artifact(path: str | Path, *, strict: bool = True) -> ProofArtifact:
    return ProofArtifact.from_json(Path(path).read_text(encoding="utf-8"), strict=strict)
