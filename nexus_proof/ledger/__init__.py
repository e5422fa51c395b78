"""
Ledger subsystem: client protocol, JSON-RPC clients, per-chain
confirmation tracking and quorum arithmetic.
"""

from nexus_proof.ledger.client import LedgerClient, TxStatus
from nexus_proof.ledger.jsonrpc_client import EvmJsonRpcClient, XrplJsonRpcClient, client_for
from nexus_proof.ledger.quorum import AggregateStatus, ChainStatus, aggregate_status
from nexus_proof.ledger.tracker import (
    ChainConfirmation,
    ChainTracker,
    ConfirmationTracker,
    TrackingOutcome,
)

__all__ = [
    "AggregateStatus",
    "ChainConfirmation",
    "ChainStatus",
    "ChainTracker",
    "ConfirmationTracker",
    "EvmJsonRpcClient",
    "LedgerClient",
    "TrackingOutcome",
    "TxStatus",
    "XrplJsonRpcClient",
    "aggregate_status",
    "client_for",
]
