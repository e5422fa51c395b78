"""
Oracle attester: drives one AttestationRequest to a terminal state.

Flow:
    1. submit(document_id, locator), retried on transient errors.
       Refused -> REJECTED. Retries exhausted -> TIMED_OUT.
    2. poll_status(request_id) every ``poll_interval_s`` (or sooner, on
       notify()). An exhausted retry round is logged and polling goes on.
    3. A finalized report is validated, in order:
           request_id       -> matches the submitted request
           reported_digest  -> equals the document_id
           signature        -> authorized key, valid Ed25519 signature
           issued_at        -> canonical format; stale or future-dated
                               reports are flagged, not refused
       Any failure -> REJECTED naming the field. Otherwise FINALIZED.

Invariants:
    - The whole flow runs under ``deadline_s``. When it expires the
      request becomes TIMED_OUT regardless of what backoff is doing.
    - Caller cancellation moves a non-terminal request to CANCELLED and
      re-raises.
    - Rejected requests are never retried here.
    - notify() only shortens the wait before the next poll. Lost or
      duplicate notifications change nothing.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from nexus_proof.config import OraclePolicy
from nexus_proof.errors import ErrorKind, StageError, TransientNetworkError, ValidationError
from nexus_proof.integrity import Digest
from nexus_proof.oracle.client import OracleClient, OracleReport
from nexus_proof.oracle.request import AttestationRequest, RequestState
from nexus_proof.oracle.signing import OracleKeyring
from nexus_proof.retry import call_with_retry
from nexus_proof.storage import ContentLocator
from nexus_proof.timestamps import is_canonical_timestamp, now_utc, parse_timestamp

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OracleAttester:
    """Submits documents to the oracle and waits for validated reports.

    Args:
        client: Oracle network client.
        keyring: Oracle keys whose signatures are trusted.
        policy: Poll interval, deadline, staleness window and retries.
        now_fn: Clock used for staleness checks.
    """

    def __init__(
        self,
        client: OracleClient,
        keyring: OracleKeyring,
        policy: OraclePolicy,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._keyring = keyring
        self._policy = policy
        self._now_fn = now_fn or _utcnow
        self._wakeups: dict[str, asyncio.Event] = {}

    async def attest(self, document_id: Digest, locator: ContentLocator) -> AttestationRequest:
        """Run a request to a terminal state and return it.

        Raises:
            asyncio.CancelledError: If the caller cancels. The request is
                left in CANCELLED.
        """
        request = AttestationRequest(document_id=document_id, locator=locator)
        try:
            async with asyncio.timeout(self._policy.deadline_s):
                await self._submit(request)
                if not request.terminal:
                    await self._poll_until_terminal(request)
        except TimeoutError:
            if not request.terminal:
                request.transition(
                    RequestState.TIMED_OUT,
                    error=StageError(
                        kind=ErrorKind.TIMEOUT,
                        stage="oracle.poll",
                        detail=f"no finalized report within {self._policy.deadline_s}s",
                    ),
                )
        except asyncio.CancelledError:
            if not request.terminal:
                request.transition(
                    RequestState.CANCELLED,
                    error=StageError(kind=ErrorKind.CANCELLED, stage="oracle"),
                )
            raise
        return request

    def notify(self, request_id: str) -> None:
        """Wake the poll loop for ``request_id`` so it polls immediately."""
        wake = self._wakeups.get(request_id)
        if wake is not None:
            wake.set()

    # -----------------------------------------------------------------
    # Submit
    # -----------------------------------------------------------------

    async def _submit(self, request: AttestationRequest) -> None:
        try:
            result = await call_with_retry(
                lambda: self._client.submit(request.document_id, request.locator),
                self._policy.retry,
                what="oracle submit",
            )
        except TransientNetworkError as exc:
            request.transition(
                RequestState.TIMED_OUT,
                error=StageError(
                    kind=ErrorKind.TRANSIENT_NETWORK,
                    stage="oracle.submit",
                    detail=str(exc),
                ),
            )
            return
        except ValidationError as exc:
            request.transition(
                RequestState.REJECTED,
                error=exc.error
                or StageError(kind=ErrorKind.VALIDATION, stage="oracle.submit", detail=str(exc)),
            )
            return

        if not result.accepted or result.request_id is None:
            request.transition(
                RequestState.REJECTED,
                error=StageError(
                    kind=ErrorKind.VALIDATION,
                    stage="oracle.submit",
                    field="accepted",
                    actual=result.error_code,
                    detail=result.detail,
                ),
            )
            return

        request.request_id = result.request_id
        request.submitted_at = now_utc()
        request.transition(RequestState.SUBMITTED)

    # -----------------------------------------------------------------
    # Poll
    # -----------------------------------------------------------------

    async def _poll_until_terminal(self, request: AttestationRequest) -> None:
        assert request.request_id is not None
        request_id = request.request_id
        wake = self._wakeups.setdefault(request_id, asyncio.Event())
        try:
            while True:
                try:
                    result = await call_with_retry(
                        lambda: self._client.poll_status(request_id),
                        self._policy.retry,
                        what="oracle poll",
                    )
                except TransientNetworkError as exc:
                    logger.warning(
                        "Poll round for %s exhausted retries, continuing: %s",
                        request_id,
                        exc,
                        extra={"request_id": request_id},
                    )
                except ValidationError as exc:
                    request.transition(
                        RequestState.REJECTED,
                        error=exc.error
                        or StageError(
                            kind=ErrorKind.VALIDATION, stage="oracle.poll", detail=str(exc)
                        ),
                    )
                    return
                else:
                    if result.error_code is not None:
                        request.transition(
                            RequestState.REJECTED,
                            error=StageError(
                                kind=ErrorKind.VALIDATION,
                                stage="oracle.poll",
                                field="status",
                                actual=result.error_code,
                                detail=result.detail,
                            ),
                        )
                        return
                    report = result.report
                    if result.finalized and report is not None and report.finalized:
                        self._accept_or_reject(request, report)
                        return

                await self._wait(wake)
        finally:
            self._wakeups.pop(request_id, None)

    async def _wait(self, wake: asyncio.Event) -> None:
        try:
            async with asyncio.timeout(self._policy.poll_interval_s):
                await wake.wait()
        except TimeoutError:
            pass
        wake.clear()

    def _accept_or_reject(self, request: AttestationRequest, report: OracleReport) -> None:
        error = self.validate_report(request, report)
        if error is not None:
            logger.info(
                "Rejected report for %s: %s",
                request.request_id,
                error.describe(),
                extra={"request_id": request.request_id, "field": error.field},
            )
            request.transition(RequestState.REJECTED, error=error)
            return
        request.report = report
        request.transition(RequestState.FINALIZED)

    # -----------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------

    def validate_report(
        self, request: AttestationRequest, report: OracleReport
    ) -> StageError | None:
        """Check a report against its request.

        Returns None when the report is acceptable, otherwise a StageError
        naming the first field that failed. Sets ``request.stale`` when
        the report is older than the staleness window or issued further
        in the future than the clock skew tolerance.
        """
        if report.request_id != request.request_id:
            return StageError(
                kind=ErrorKind.VALIDATION,
                stage="oracle.validate",
                field="request_id",
                expected=request.request_id,
                actual=report.request_id,
            )

        if report.reported_digest != request.document_id:
            return StageError(
                kind=ErrorKind.VALIDATION,
                stage="oracle.validate",
                field="reported_digest",
                expected=request.document_id.prefixed,
                actual=report.reported_digest.prefixed,
            )

        if not self._keyring.verify(report):
            detail = (
                "signature does not verify"
                if report.key_id in self._keyring
                else "key_id is not an authorized oracle key"
            )
            return StageError(
                kind=ErrorKind.VALIDATION,
                stage="oracle.validate",
                field="signature",
                actual=report.key_id,
                detail=detail,
            )

        if not is_canonical_timestamp(report.issued_at):
            return StageError(
                kind=ErrorKind.VALIDATION,
                stage="oracle.validate",
                field="issued_at",
                expected="YYYY-MM-DDTHH:MM:SS+00:00",
                actual=report.issued_at,
                detail="issued_at is not in the artifact timestamp format",
            )

        try:
            issued = parse_timestamp(report.issued_at)
        except ValueError as exc:
            return StageError(
                kind=ErrorKind.VALIDATION,
                stage="oracle.validate",
                field="issued_at",
                actual=report.issued_at,
                detail=str(exc),
            )

        age_s = (self._now_fn() - issued).total_seconds()
        if age_s > self._policy.staleness_window_s:
            request.stale = True
            logger.warning(
                "Report %s is stale (%.0fs old, window %.0fs)",
                report.request_id,
                age_s,
                self._policy.staleness_window_s,
                extra={"request_id": report.request_id, "issued_at": report.issued_at},
            )
        elif age_s < -self._policy.max_clock_skew_s:
            request.stale = True
            logger.warning(
                "Report %s is issued %.0fs in the future (tolerance %.0fs)",
                report.request_id,
                -age_s,
                self._policy.max_clock_skew_s,
                extra={"request_id": report.request_id, "issued_at": report.issued_at},
            )
        return None
