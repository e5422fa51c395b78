"""
nexus-proof: attestation and cross-chain verification engine.

Derives a deterministic identity for content plus metadata, has an
external oracle attest to it, tracks the oracle's relay transactions
across independent ledgers, and assembles a self-checksummed proof
artifact that anyone can re-verify.
"""

from nexus_proof.artifact import ProofArtifact, assemble
from nexus_proof.canonical_json import canonical_json, canonical_json_bytes
from nexus_proof.config import EngineConfig, LedgerConfig, OraclePolicy, RetryPolicy, load_config
from nexus_proof.engine import AttestationEngine, AttestationResult
from nexus_proof.errors import (
    CanonicalizationError,
    ErrorKind,
    IntegrityFault,
    ProofEngineError,
    QuorumUnreachableError,
    StageError,
    TransientNetworkError,
    ValidationError,
    WallClockTimeoutError,
)
from nexus_proof.integrity import Digest, DocumentId, derive_identity
from nexus_proof.storage import ContentLocator
from nexus_proof.verifier import Verdict, VerificationCheck, VerificationReport, Verifier

__version__ = "0.1.0"

__all__ = [
    "AttestationEngine",
    "AttestationResult",
    "CanonicalizationError",
    "ContentLocator",
    "Digest",
    "DocumentId",
    "EngineConfig",
    "ErrorKind",
    "IntegrityFault",
    "LedgerConfig",
    "OraclePolicy",
    "ProofArtifact",
    "ProofEngineError",
    "QuorumUnreachableError",
    "RetryPolicy",
    "StageError",
    "TransientNetworkError",
    "ValidationError",
    "Verdict",
    "VerificationCheck",
    "VerificationReport",
    "Verifier",
    "WallClockTimeoutError",
    "__version__",
    "assemble",
    "canonical_json",
    "canonical_json_bytes",
    "derive_identity",
    "load_config",
]
