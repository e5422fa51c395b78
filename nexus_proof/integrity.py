"""
Integrity utilities for content hashing and document identity.

Identity derivation:
    content_digest  = sha256(raw content bytes)
    metadata_digest = sha256(canonical_json_bytes(metadata))
    document_id     = sha256(content_digest.value || metadata_digest.value)

The concatenation is over the raw 32-byte digests (not their hex text),
content first. This order is frozen: reversing it changes every derived
ID, so it lives in exactly one function (``assemble_document_id``).

Determinism is load-bearing. ``metadata_digest`` canonicalizes twice
(directly, and again after a parse round-trip) and raises IntegrityFault
if the two byte strings differ. A mismatch means the canonicalizer is
broken and the pipeline must halt; it is never retried.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Any

from nexus_proof.canonical_json import canonical_json_bytes, parse_canonical
from nexus_proof.errors import ErrorKind, IntegrityFault, StageError

ALGORITHM = "sha256"
DIGEST_SIZE = 32

_PREFIXED_RE = re.compile(r"^sha256:[0-9a-f]{64}$")


def sha256_digest(data: bytes) -> str:
    """Compute SHA256 hex digest of bytes."""
    return hashlib.sha256(data).hexdigest()


# =========================================================================
# Digest
# =========================================================================


@dataclass(frozen=True)
class Digest:
    """A 256-bit digest tagged with its algorithm.

    Textual form is ``"sha256:" + 64 lowercase hex``, which is fixed-length
    and is what every exported artifact carries.
    """

    algorithm: str
    value: bytes

    def __post_init__(self) -> None:
        if self.algorithm != ALGORITHM:
            raise ValueError(f"unsupported digest algorithm: {self.algorithm!r}")
        if len(self.value) != DIGEST_SIZE:
            raise ValueError(
                f"{self.algorithm} digest must be {DIGEST_SIZE} bytes, "
                f"got {len(self.value)}"
            )

    @property
    def hex(self) -> str:
        return self.value.hex()

    @property
    def prefixed(self) -> str:
        return f"{self.algorithm}:{self.value.hex()}"

    def __str__(self) -> str:
        return self.prefixed

    @classmethod
    def parse(cls, text: str) -> Digest:
        """Parse the prefixed textual form.

        Raises:
            ValueError: If ``text`` is not "sha256:" + 64 lowercase hex.
        """
        if not _PREFIXED_RE.match(text):
            raise ValueError(
                f"digest must be 'sha256:' + 64 lowercase hex chars, got: {text!r}"
            )
        return cls(ALGORITHM, bytes.fromhex(text[7:]))


# DocumentId is a Digest; the alias documents intent at call sites.
DocumentId = Digest


def hash_bytes(data: bytes) -> Digest:
    """Hash raw bytes."""
    return Digest(ALGORITHM, hashlib.sha256(data).digest())


def content_digest(content: bytes) -> Digest:
    """Digest over the raw content bytes."""
    return hash_bytes(content)


def metadata_digest(metadata: Any) -> Digest:
    """Digest over the canonical serialization of structured metadata.

    Raises:
        CanonicalizationError: If metadata has no canonical form.
        IntegrityFault: If canonicalization is not idempotent.
    """
    first = canonical_json_bytes(metadata)
    second = canonical_json_bytes(parse_canonical(first))
    if first != second:
        raise IntegrityFault(
            "canonicalization is not idempotent",
            error=StageError(
                kind=ErrorKind.INTEGRITY_FAULT,
                stage="canonicalize",
                expected=sha256_digest(first),
                actual=sha256_digest(second),
                detail="re-canonicalizing the same metadata produced different bytes",
            ),
        )
    return hash_bytes(first)


def assemble_document_id(content: Digest, metadata: Digest) -> DocumentId:
    """Combine the two digests into a DocumentId.

    Order is content || metadata over raw bytes. Do not change.
    """
    return hash_bytes(content.value + metadata.value)


@dataclass(frozen=True)
class Identity:
    """All three digests derived from one (content, metadata) pair."""

    content_digest: Digest
    metadata_digest: Digest
    document_id: DocumentId

    def to_dict(self) -> dict[str, str]:
        return {
            "content_digest": self.content_digest.prefixed,
            "metadata_digest": self.metadata_digest.prefixed,
            "document_id": self.document_id.prefixed,
        }


def derive_identity(content: bytes, metadata: Any) -> Identity:
    c = content_digest(content)
    m = metadata_digest(metadata)
    return Identity(
        content_digest=c,
        metadata_digest=m,
        document_id=assemble_document_id(c, m),
    )


def verify_digest(data: bytes, expected: Digest) -> bool:
    """Verify that bytes match an expected digest."""
    return hash_bytes(data) == expected
