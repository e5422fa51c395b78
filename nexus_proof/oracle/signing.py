"""
Oracle report signatures (Ed25519).

Signed payload:
    The signature covers a canonical JSON payload containing exactly
    request_id, reported_digest (prefixed) and issued_at. Relay
    references and the key_id are not signed; the key_id only selects
    which authorized key to verify with.

Authorization:
    A report is trusted only if its key_id is in the configured
    keyring AND the signature verifies against that key. A signature
    that verifies under an unknown key is still rejected.

``sign_report`` exists for local oracle simulators and tests. The engine
itself only verifies.
"""

from __future__ import annotations

from collections.abc import Iterable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from nexus_proof.canonical_json import canonical_json_bytes
from nexus_proof.integrity import Digest
from nexus_proof.oracle.client import OracleReport


def report_signing_bytes(request_id: str, reported_digest: Digest, issued_at: str) -> bytes:
    """Build the canonical bytes that get signed."""
    return canonical_json_bytes({
        "request_id": request_id,
        "reported_digest": reported_digest.prefixed,
        "issued_at": issued_at,
    })


def sign_report(
    private_key: Ed25519PrivateKey,
    request_id: str,
    reported_digest: Digest,
    issued_at: str,
    *,
    finalized: bool = True,
    relays: dict[str, str] | None = None,
) -> OracleReport:
    """Produce a signed OracleReport."""
    signature = private_key.sign(
        report_signing_bytes(request_id, reported_digest, issued_at)
    )
    return OracleReport(
        request_id=request_id,
        reported_digest=reported_digest,
        signature=signature.hex(),
        issued_at=issued_at,
        finalized=finalized,
        key_id=get_public_key_hex(private_key),
        relays=dict(relays or {}),
    )


# =========================================================================
# Key helpers
# =========================================================================


def generate_signing_key() -> Ed25519PrivateKey:
    """Generate a new Ed25519 signing key pair."""
    return Ed25519PrivateKey.generate()


def get_public_key_hex(private_key: Ed25519PrivateKey) -> str:
    """Extract the public key as a hex-encoded string (64 chars / 32 bytes)."""
    raw_bytes = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return raw_bytes.hex()


def private_key_to_hex(private_key: Ed25519PrivateKey) -> str:
    raw = private_key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
    return raw.hex()


def private_key_from_hex(hex_string: str) -> Ed25519PrivateKey:
    return Ed25519PrivateKey.from_private_bytes(bytes.fromhex(hex_string))


def public_key_from_hex(hex_string: str) -> Ed25519PublicKey:
    """Reconstruct an Ed25519 public key from hex-encoded raw bytes."""
    return Ed25519PublicKey.from_public_bytes(bytes.fromhex(hex_string))


# =========================================================================
# Verification
# =========================================================================


class OracleKeyring:
    """The set of oracle public keys whose reports are trusted.

    Args:
        public_keys_hex: Hex-encoded raw Ed25519 public keys.
    """

    def __init__(self, public_keys_hex: Iterable[str]) -> None:
        self._keys: dict[str, Ed25519PublicKey] = {
            key_hex: public_key_from_hex(key_hex) for key_hex in public_keys_hex
        }

    def __contains__(self, key_id: object) -> bool:
        return key_id in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def key_ids(self) -> tuple[str, ...]:
        return tuple(sorted(self._keys))

    def verify(self, report: OracleReport) -> bool:
        """Return True iff the report is signed by an authorized key."""
        public_key = self._keys.get(report.key_id)
        if public_key is None:
            return False
        payload = report_signing_bytes(
            report.request_id, report.reported_digest, report.issued_at
        )
        try:
            public_key.verify(bytes.fromhex(report.signature), payload)
        except (InvalidSignature, ValueError):
            return False
        return True
