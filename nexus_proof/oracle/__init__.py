"""
Oracle subsystem: client protocol, HTTP client, report signatures, the
request state machine and the attester loop.
"""

from nexus_proof.oracle.attester import OracleAttester
from nexus_proof.oracle.client import OracleClient, OracleReport, PollResult, SubmitResult
from nexus_proof.oracle.http_client import HttpOracleClient
from nexus_proof.oracle.request import AttestationRequest, RequestState
from nexus_proof.oracle.signing import (
    OracleKeyring,
    generate_signing_key,
    get_public_key_hex,
    public_key_from_hex,
    sign_report,
)

__all__ = [
    "AttestationRequest",
    "HttpOracleClient",
    "OracleAttester",
    "OracleClient",
    "OracleKeyring",
    "OracleReport",
    "PollResult",
    "RequestState",
    "SubmitResult",
    "generate_signing_key",
    "get_public_key_hex",
    "public_key_from_hex",
    "sign_report",
]
