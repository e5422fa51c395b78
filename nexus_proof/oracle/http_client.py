"""
Oracle HTTP client: real network implementation of OracleClient.

Translates the oracle's JSON responses into SubmitResult/PollResult.
Uses an injectable transport (JsonTransport) so the HTTP layer can be
swapped for test fakes without changing parsing logic.

No retry loops. Retries belong to the attester.

Wire format:
    POST {base}/requests
        body: {"document_id": "sha256:...", "locator": {"uri", "digest"}}
        ok:   {"accepted": true, "request_id": "..."}
        no:   {"accepted": false, "error": "CODE", "message": "..."}

    GET {base}/requests/{request_id}
        pending:   {"status": "pending"}
        finalized: {"status": "finalized", "report": {...}}
        rejected:  {"status": "rejected", "error": "CODE", "message": "..."}
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from nexus_proof.integrity import Digest
from nexus_proof.oracle.client import OracleReport, PollResult, SubmitResult
from nexus_proof.storage import ContentLocator
from nexus_proof.transport import HttpxTransport, JsonTransport

MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
MALFORMED_REPORT = "MALFORMED_REPORT"


class HttpOracleClient:
    """Oracle client implementing the OracleClient protocol.

    Args:
        base_url: Oracle endpoint (e.g. "https://oracle.example/v1").
        transport: Injectable transport. Defaults to HttpxTransport.
    """

    def __init__(
        self,
        base_url: str,
        transport: JsonTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport or HttpxTransport()

    @property
    def base_url(self) -> str:
        return self._base_url

    async def submit(self, document_id: Digest, locator: ContentLocator) -> SubmitResult:
        """POST a new attestation request.

        Transport exceptions propagate to the caller.
        """
        payload = {
            "document_id": document_id.prefixed,
            "locator": locator.to_dict(),
        }
        response = await self._transport.post_json(f"{self._base_url}/requests", payload)
        return _parse_submit_response(response)

    async def poll_status(self, request_id: str) -> PollResult:
        """GET the current status of a request.

        Transport exceptions propagate to the caller.
        """
        url = f"{self._base_url}/requests/{quote(request_id, safe='')}"
        response = await self._transport.get_json(url)
        return _parse_poll_response(response)


# =====================================================================
# Response parsing (pure functions, no I/O)
# =====================================================================


def _parse_submit_response(response: dict[str, Any]) -> SubmitResult:
    """Parse a submit response into SubmitResult.

    Handles:
        - Accepted request (request_id present)
        - Oracle refusal (accepted == false)
        - Accepted without a request_id (treated as malformed)
    """
    if not response.get("accepted", False):
        return SubmitResult(
            accepted=False,
            error_code=str(response.get("error") or "REJECTED"),
            detail=response.get("message"),
        )

    request_id = response.get("request_id")
    if not isinstance(request_id, str) or not request_id:
        return SubmitResult(
            accepted=False,
            error_code=MALFORMED_RESPONSE,
            detail="accepted response has no request_id",
        )
    return SubmitResult(accepted=True, request_id=request_id)


def _parse_poll_response(response: dict[str, Any]) -> PollResult:
    """Parse a status response into PollResult.

    Handles:
        - pending
        - finalized with a well-formed report
        - finalized with a malformed report (MALFORMED_REPORT)
        - oracle-side rejection
        - unknown status (MALFORMED_RESPONSE)
    """
    status = response.get("status")

    if status == "pending":
        return PollResult()

    if status == "rejected":
        return PollResult(
            error_code=str(response.get("error") or "REJECTED"),
            detail=response.get("message"),
        )

    if status == "finalized":
        raw = response.get("report")
        if not isinstance(raw, dict):
            return PollResult(error_code=MALFORMED_REPORT, detail="finalized without report")
        try:
            report = OracleReport.from_dict(raw)
        except ValueError as exc:
            return PollResult(error_code=MALFORMED_REPORT, detail=str(exc))
        return PollResult(finalized=True, report=report)

    return PollResult(error_code=MALFORMED_RESPONSE, detail=f"unknown status {status!r}")
