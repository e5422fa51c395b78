"""
Ledger client protocol: the network boundary to each target ledger.

The confirmation tracker and the verifier depend on this interface,
never on a concrete JSON-RPC dialect.

Concrete implementations:
    - EvmJsonRpcClient (eth_getTransactionReceipt + eth_blockNumber)
    - XrplJsonRpcClient (tx + validated ledger)
    - FakeLedgerClient (tests)

The protocol has exactly one method:
    - get_transaction_status(transaction_ref) -> TxStatus

No exceptions for "expected" outcomes (not found, reverted, node-side
error). Those are captured in TxStatus. Transport failures raise
TransientNetworkError and are retried by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class TxStatus:
    """Status of one transaction on one ledger.

    Attributes:
        found: Whether the ledger knows the transaction at all.
        block_height: Block (or ledger index) that includes it. None if
            not found or not yet in a block.
        confirmation_count: Blocks at or above block_height, inclusive.
            0 if not found.
        reverted: The transaction is included but failed on-chain.
        error_code: Machine-readable error if the node refused the query
            (anything other than plain "not found").
        detail: Human-readable detail for diagnostics.
    """

    found: bool
    block_height: int | None = None
    confirmation_count: int = 0
    reverted: bool = False
    error_code: str | None = None
    detail: str | None = None


@runtime_checkable
class LedgerClient(Protocol):
    """Interface for ledger status queries.

    Implementations identify the chain they talk to via ``chain_id``.
    """

    @property
    def chain_id(self) -> str:
        ...

    async def get_transaction_status(self, transaction_ref: str) -> TxStatus:
        """Query the current status of a relay transaction."""
        ...
