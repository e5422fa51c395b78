"""
SQLite persistence for proof artifacts and verification reports.

Two tables, minimal:
    - proof_artifacts: one row per artifact, keyed by its checksum.
    - verification_reports: append-only log of verify() outcomes.

Invariants:
    - Artifacts are immutable. A second put of the same checksum is a
      no-op; nothing is ever updated.
    - Verification reports are append-only. Never updated or deleted.
    - Stored JSON is canonical. Loading re-validates and re-checks the
      checksum (strict), so a tampered row raises IntegrityFault.

An in-memory store keeps one connection for its lifetime. A file-backed
store opens a WAL-mode connection per transaction.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from nexus_proof.artifact import ProofArtifact
from nexus_proof.canonical_json import canonical_json
from nexus_proof.timestamps import now_utc
from nexus_proof.verifier import VerificationReport

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS proof_artifacts (
    artifact_checksum TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    aggregate_status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    artifact_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_artifacts_document
ON proof_artifacts(document_id, created_at);

CREATE TABLE IF NOT EXISTS verification_reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    artifact_checksum TEXT NOT NULL,
    verdict TEXT NOT NULL,
    verified_at TEXT NOT NULL,
    report_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_reports_artifact
ON verification_reports(artifact_checksum, id);
"""


class ProofStore:
    """SQLite-backed store for proof artifacts.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._is_memory = self._db_path == ":memory:"

        if self._is_memory:
            self._persistent_conn: sqlite3.Connection | None = sqlite3.connect(
                ":memory:", check_same_thread=False
            )
            self._persistent_conn.row_factory = sqlite3.Row
        else:
            self._persistent_conn = None

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._persistent_conn is not None:
            return self._persistent_conn

        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if self._persistent_conn is None:
                conn.close()

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.executescript(_SCHEMA)

    # -----------------------------------------------------------------
    # Artifacts
    # -----------------------------------------------------------------

    def put_artifact(self, artifact: ProofArtifact) -> bool:
        """Insert an artifact. Returns True if inserted, False if already stored."""
        with self._transaction() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO proof_artifacts
                    (artifact_checksum, document_id, aggregate_status, created_at, artifact_json)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        artifact.artifact_checksum.prefixed,
                        artifact.document_id.prefixed,
                        artifact.aggregate_status.value,
                        artifact.created_at,
                        artifact.to_canonical_json(),
                    ),
                )
                return True
            except sqlite3.IntegrityError:
                return False

    def get_artifact(self, artifact_checksum: str) -> ProofArtifact | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT artifact_json FROM proof_artifacts WHERE artifact_checksum = ?",
                (artifact_checksum,),
            ).fetchone()
        if row is None:
            return None
        return ProofArtifact.from_json(row["artifact_json"])

    def latest_for_document(self, document_id: str) -> ProofArtifact | None:
        """Most recently created artifact for a document id."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT artifact_json FROM proof_artifacts
                WHERE document_id = ?
                ORDER BY created_at DESC, artifact_checksum DESC
                LIMIT 1
                """,
                (document_id,),
            ).fetchone()
        if row is None:
            return None
        return ProofArtifact.from_json(row["artifact_json"])

    def list_artifacts(
        self,
        document_id: str | None = None,
        aggregate_status: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Summary rows (no JSON), newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if document_id is not None:
            clauses.append("document_id = ?")
            params.append(document_id)
        if aggregate_status is not None:
            clauses.append("aggregate_status = ?")
            params.append(aggregate_status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT artifact_checksum, document_id, aggregate_status, created_at
                FROM proof_artifacts {where}
                ORDER BY created_at DESC, artifact_checksum DESC
                LIMIT ?
                """,
                params,
            ).fetchall()
        return [dict(row) for row in rows]

    # -----------------------------------------------------------------
    # Verification reports
    # -----------------------------------------------------------------

    def record_verification(
        self,
        artifact_checksum: str,
        report: VerificationReport,
        verified_at: str | None = None,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO verification_reports
                (artifact_checksum, verdict, verified_at, report_json)
                VALUES (?, ?, ?, ?)
                """,
                (
                    artifact_checksum,
                    report.verdict.value,
                    verified_at or now_utc(),
                    canonical_json(report.to_dict()),
                ),
            )

    def list_verifications(self, artifact_checksum: str) -> list[dict[str, Any]]:
        """All verification outcomes for an artifact, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT verdict, verified_at, report_json FROM verification_reports
                WHERE artifact_checksum = ?
                ORDER BY id
                """,
                (artifact_checksum,),
            ).fetchall()
        return [dict(row) for row in rows]

    # -----------------------------------------------------------------
    # Export / import
    # -----------------------------------------------------------------

    def export_json(self, artifact_checksum: str) -> str | None:
        """Canonical JSON of a stored artifact."""
        artifact = self.get_artifact(artifact_checksum)
        return artifact.to_canonical_json() if artifact else None

    def import_json(self, text: str | bytes) -> ProofArtifact:
        """Load, validate and store an exported artifact.

        Raises:
            jsonschema.ValidationError: If the document doesn't match the schema.
            IntegrityFault: If the checksum doesn't match.
        """
        artifact = ProofArtifact.from_json(text)
        self.put_artifact(artifact)
        return artifact
