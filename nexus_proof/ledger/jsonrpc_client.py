"""
JSON-RPC ledger clients: real network implementations of LedgerClient.

Two dialects:
    - EvmJsonRpcClient: ``eth_getTransactionReceipt`` for inclusion and
      outcome, ``eth_blockNumber`` for the chain head.
    - XrplJsonRpcClient: ``tx`` for inclusion and outcome, ``ledger``
      (validated) for the chain head.

Confirmation count is ``head - block_height + 1``: a transaction in the
head block has one confirmation.

Both use an injectable transport (JsonTransport) so the HTTP layer can
be swapped for test fakes without changing parsing logic. Request ids
are a per-client counter.

No retry loops. Transport exceptions propagate to the caller.
"""

from __future__ import annotations

import itertools
from typing import Any

from nexus_proof.config import LedgerConfig
from nexus_proof.ledger.client import LedgerClient, TxStatus
from nexus_proof.transport import HttpxTransport, JsonTransport

RPC_ERROR = "RPC_ERROR"
SERVER_ERROR = "SERVER_ERROR"
MALFORMED_RESPONSE = "MALFORMED_RESPONSE"


class _JsonRpcClient:
    def __init__(
        self,
        chain_id: str,
        url: str,
        transport: JsonTransport | None = None,
    ) -> None:
        self._chain_id = chain_id
        self._url = url
        self._transport = transport or HttpxTransport()
        self._ids = itertools.count(1)

    @property
    def chain_id(self) -> str:
        return self._chain_id

    @property
    def url(self) -> str:
        return self._url

    async def _call(self, method: str, params: list[Any]) -> dict[str, Any]:
        payload: dict[str, Any] = {"method": method, "params": params, "id": next(self._ids)}
        payload.update(self._envelope())
        return await self._transport.post_json(self._url, payload)

    def _envelope(self) -> dict[str, Any]:
        return {}


# =====================================================================
# EVM
# =====================================================================


class EvmJsonRpcClient(_JsonRpcClient):
    """EVM-compatible chain client.

    Args:
        chain_id: Identifier used in artifacts (e.g. "eth-mainnet").
        url: JSON-RPC endpoint.
        transport: Injectable transport. Defaults to HttpxTransport.
    """

    def _envelope(self) -> dict[str, Any]:
        return {"jsonrpc": "2.0"}

    async def get_transaction_status(self, transaction_ref: str) -> TxStatus:
        receipt_response = await self._call("eth_getTransactionReceipt", [transaction_ref])
        receipt = _parse_evm_receipt(receipt_response)
        if not receipt.found or receipt.error_code is not None:
            return receipt

        head_response = await self._call("eth_blockNumber", [])
        return _apply_evm_head(receipt, head_response)


def _parse_hex_quantity(value: Any) -> int | None:
    if not isinstance(value, str) or not value.startswith("0x"):
        return None
    try:
        return int(value, 16)
    except ValueError:
        return None


def _parse_evm_receipt(response: dict[str, Any]) -> TxStatus:
    """Parse an eth_getTransactionReceipt response.

    Handles:
        - JSON-RPC error object
        - null result (unknown or still in the mempool)
        - receipt with status 0x1 (success) or 0x0 (reverted)
    """
    error = response.get("error")
    if error is not None:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return TxStatus(found=False, error_code=RPC_ERROR, detail=message)

    receipt = response.get("result")
    if receipt is None:
        return TxStatus(found=False)
    if not isinstance(receipt, dict):
        return TxStatus(found=False, error_code=MALFORMED_RESPONSE, detail="receipt is not an object")

    block_height = _parse_hex_quantity(receipt.get("blockNumber"))
    if block_height is None:
        # Known to the node but not yet mined.
        return TxStatus(found=True)

    return TxStatus(
        found=True,
        block_height=block_height,
        reverted=receipt.get("status") == "0x0",
    )


def _apply_evm_head(receipt: TxStatus, response: dict[str, Any]) -> TxStatus:
    error = response.get("error")
    if error is not None:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return TxStatus(found=True, block_height=receipt.block_height, error_code=RPC_ERROR, detail=message)

    head = _parse_hex_quantity(response.get("result"))
    if head is None:
        return TxStatus(
            found=True,
            block_height=receipt.block_height,
            error_code=MALFORMED_RESPONSE,
            detail="eth_blockNumber result is not a hex quantity",
        )
    assert receipt.block_height is not None
    return TxStatus(
        found=True,
        block_height=receipt.block_height,
        confirmation_count=max(head - receipt.block_height + 1, 0),
        reverted=receipt.reverted,
    )


# =====================================================================
# XRPL
# =====================================================================


class XrplJsonRpcClient(_JsonRpcClient):
    """XRP Ledger client (rippled JSON-RPC).

    A transaction whose final result is anything other than tesSUCCESS
    is included but reverted (e.g. tec* codes claim a fee and fail).

    Args:
        chain_id: Identifier used in artifacts (e.g. "xrpl-mainnet").
        url: rippled JSON-RPC endpoint.
        transport: Injectable transport. Defaults to HttpxTransport.
    """

    async def get_transaction_status(self, transaction_ref: str) -> TxStatus:
        tx_response = await self._call(
            "tx", [{"transaction": transaction_ref, "binary": False}]
        )
        tx = _parse_xrpl_tx(tx_response)
        if tx.block_height is None or tx.error_code is not None:
            return tx

        ledger_response = await self._call(
            "ledger", [{"ledger_index": "validated"}]
        )
        return _apply_xrpl_validated_ledger(tx, ledger_response)


def _parse_xrpl_tx(response: dict[str, Any]) -> TxStatus:
    """Parse a rippled tx response.

    Handles:
        - txnNotFound
        - other server-level errors
        - found but not validated (no height yet)
        - validated, with meta.TransactionResult
    """
    result = response.get("result")
    if not isinstance(result, dict):
        return TxStatus(found=False, error_code=MALFORMED_RESPONSE, detail="tx result is not an object")

    if result.get("status") == "error":
        error = result.get("error", "")
        if error == "txnNotFound":
            return TxStatus(found=False)
        return TxStatus(
            found=False,
            error_code=SERVER_ERROR,
            detail=result.get("error_message") or error,
        )

    if not result.get("validated", False):
        return TxStatus(found=True)

    ledger_index = result.get("ledger_index")
    if not isinstance(ledger_index, int):
        return TxStatus(found=True, error_code=MALFORMED_RESPONSE, detail="validated tx has no ledger_index")

    engine_result = None
    meta = result.get("meta")
    if isinstance(meta, dict):
        engine_result = meta.get("TransactionResult")

    return TxStatus(
        found=True,
        block_height=ledger_index,
        reverted=engine_result != "tesSUCCESS",
        detail=engine_result,
    )


def _apply_xrpl_validated_ledger(tx: TxStatus, response: dict[str, Any]) -> TxStatus:
    result = response.get("result")
    if not isinstance(result, dict):
        return TxStatus(
            found=True,
            block_height=tx.block_height,
            error_code=MALFORMED_RESPONSE,
            detail="ledger result is not an object",
        )
    if result.get("status") == "error":
        return TxStatus(
            found=True,
            block_height=tx.block_height,
            error_code=SERVER_ERROR,
            detail=result.get("error_message") or result.get("error", "unknown server error"),
        )

    head = result.get("ledger_index")
    if isinstance(head, str) and head.isdigit():
        head = int(head)
    if not isinstance(head, int):
        return TxStatus(
            found=True,
            block_height=tx.block_height,
            error_code=MALFORMED_RESPONSE,
            detail="validated ledger has no ledger_index",
        )
    assert tx.block_height is not None
    return TxStatus(
        found=True,
        block_height=tx.block_height,
        confirmation_count=max(head - tx.block_height + 1, 0),
        reverted=tx.reverted,
        detail=tx.detail,
    )


def client_for(ledger: LedgerConfig, transport: JsonTransport | None = None) -> LedgerClient:
    """Build the JSON-RPC client matching ``ledger.kind``.

    Raises:
        ValueError: If the ledger has no url.
    """
    if ledger.url is None:
        raise ValueError(f"ledger {ledger.chain_id!r} has no url")
    if ledger.kind == "xrpl":
        return XrplJsonRpcClient(ledger.chain_id, ledger.url, transport)
    return EvmJsonRpcClient(ledger.chain_id, ledger.url, transport)
