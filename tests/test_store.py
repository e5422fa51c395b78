"""
Tests for ProofStore (SQLite).

Test plan:
- put/get round trip, duplicate put is a no-op returning False
- latest_for_document picks the newest created_at
- list_artifacts filters by document and status, honours limit
- Verification reports are appended and listed oldest first
- export_json / import_json round trip into a second store
- import_json of a tampered export raises IntegrityFault
- File-backed database persists across instances
"""

import json
from pathlib import Path

import pytest

from nexus_proof.artifact import ProofArtifact, assemble
from nexus_proof.errors import IntegrityFault
from nexus_proof.integrity import derive_identity
from nexus_proof.ledger.quorum import AggregateStatus, ChainStatus
from nexus_proof.ledger.tracker import ChainConfirmation
from nexus_proof.oracle.signing import generate_signing_key, sign_report
from nexus_proof.storage import ContentLocator
from nexus_proof.store import ProofStore
from nexus_proof.verifier import Verdict, VerificationCheck, VerificationReport

KEY = generate_signing_key()


def _artifact(
    content: bytes = b"hello world",
    created_at: str = "2026-03-01T12:05:00+00:00",
    aggregate: AggregateStatus = AggregateStatus.CONFIRMED,
) -> ProofArtifact:
    identity = derive_identity(content, {"type": "note"})
    report = sign_report(
        KEY, "req-1", identity.document_id, "2026-03-01T12:00:00+00:00",
        relays={"evm:1": "0xaa"},
    )
    status = ChainStatus.CONFIRMED if aggregate == AggregateStatus.CONFIRMED else ChainStatus.FAILED
    return assemble(
        identity.document_id,
        ContentLocator("ipfs://bafy", identity.content_digest),
        identity.metadata_digest,
        report,
        {"evm:1": ChainConfirmation("evm:1", status, 1, transaction_ref="0xaa", block_height=1)},
        aggregate,
        quorum=1,
        created_at=created_at,
    )


def _report(verdict: Verdict) -> VerificationReport:
    return VerificationReport(
        verdict=verdict,
        document_id="sha256:" + "0" * 64,
        checks=(VerificationCheck(name="artifact_checksum", ok=verdict == Verdict.VERIFIED),),
    )


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


class TestArtifacts:
    def test_put_get(self) -> None:
        store = ProofStore()
        artifact = _artifact()
        assert store.put_artifact(artifact) is True
        assert store.get_artifact(artifact.artifact_checksum.prefixed) == artifact

    def test_duplicate_put(self) -> None:
        store = ProofStore()
        artifact = _artifact()
        store.put_artifact(artifact)
        assert store.put_artifact(artifact) is False
        assert len(store.list_artifacts()) == 1

    def test_get_missing(self) -> None:
        assert ProofStore().get_artifact("sha256:" + "f" * 64) is None

    def test_latest_for_document(self) -> None:
        store = ProofStore()
        older = _artifact(created_at="2026-03-01T00:00:00+00:00")
        newer = _artifact(created_at="2026-03-02T00:00:00+00:00")
        store.put_artifact(newer)
        store.put_artifact(older)
        assert store.latest_for_document(older.document_id.prefixed) == newer
        assert store.latest_for_document("sha256:" + "e" * 64) is None

    def test_list_filters(self) -> None:
        store = ProofStore()
        a = _artifact(b"a")
        b = _artifact(b"b", aggregate=AggregateStatus.FAILED)
        c = _artifact(b"a", created_at="2026-03-03T00:00:00+00:00")
        for artifact in (a, b, c):
            store.put_artifact(artifact)

        by_doc = store.list_artifacts(document_id=a.document_id.prefixed)
        assert [row["artifact_checksum"] for row in by_doc] == [
            c.artifact_checksum.prefixed,
            a.artifact_checksum.prefixed,
        ]
        failed = store.list_artifacts(aggregate_status="failed")
        assert [row["document_id"] for row in failed] == [b.document_id.prefixed]
        assert len(store.list_artifacts(limit=1)) == 1


# ---------------------------------------------------------------------------
# Verification reports
# ---------------------------------------------------------------------------


class TestVerifications:
    def test_append_and_list(self) -> None:
        store = ProofStore()
        checksum = _artifact().artifact_checksum.prefixed
        store.record_verification(checksum, _report(Verdict.VERIFIED), "2026-03-01T00:00:00+00:00")
        store.record_verification(checksum, _report(Verdict.FAILED), "2026-03-02T00:00:00+00:00")

        rows = store.list_verifications(checksum)
        assert [row["verdict"] for row in rows] == ["VERIFIED", "FAILED"]
        assert json.loads(rows[1]["report_json"])["failed_stages"] == ["artifact_checksum"]
        assert store.list_verifications("sha256:" + "1" * 64) == []


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------


class TestExportImport:
    def test_round_trip(self) -> None:
        source, target = ProofStore(), ProofStore()
        artifact = _artifact()
        source.put_artifact(artifact)

        exported = source.export_json(artifact.artifact_checksum.prefixed)
        assert exported is not None
        assert target.import_json(exported) == artifact
        assert target.get_artifact(artifact.artifact_checksum.prefixed) == artifact

    def test_export_missing(self) -> None:
        assert ProofStore().export_json("sha256:" + "f" * 64) is None

    def test_import_tampered(self) -> None:
        data = _artifact().to_dict()
        data["quorum"] = 2
        with pytest.raises(IntegrityFault):
            ProofStore().import_json(json.dumps(data))


class TestFileBacked:
    def test_persists(self, tmp_path: Path) -> None:
        db = tmp_path / "proofs.db"
        artifact = _artifact()
        ProofStore(db).put_artifact(artifact)
        assert ProofStore(db).get_artifact(artifact.artifact_checksum.prefixed) == artifact
