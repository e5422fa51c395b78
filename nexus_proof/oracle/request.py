"""
Attestation request state machine.

States:
    CREATED    -> SUBMITTED | REJECTED | TIMED_OUT | CANCELLED
    SUBMITTED  -> FINALIZED | REJECTED | TIMED_OUT | CANCELLED
    FINALIZED, REJECTED, TIMED_OUT, CANCELLED are terminal.

Rules:
    - Only the attester that owns a request mutates it.
    - Every transition is appended to ``history`` with a timestamp.
    - An illegal transition raises IntegrityFault. It means the state
      machine itself is broken, which is never retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum

from nexus_proof.errors import ErrorKind, IntegrityFault, StageError
from nexus_proof.integrity import Digest
from nexus_proof.oracle.client import OracleReport
from nexus_proof.storage import ContentLocator
from nexus_proof.timestamps import now_utc

logger = logging.getLogger(__name__)


class RequestState(StrEnum):
    CREATED = "created"
    SUBMITTED = "submitted"
    FINALIZED = "finalized"
    TIMED_OUT = "timed_out"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    RequestState.FINALIZED,
    RequestState.TIMED_OUT,
    RequestState.REJECTED,
    RequestState.CANCELLED,
})

_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.CREATED: frozenset({
        RequestState.SUBMITTED,
        RequestState.REJECTED,
        RequestState.TIMED_OUT,
        RequestState.CANCELLED,
    }),
    RequestState.SUBMITTED: frozenset({
        RequestState.FINALIZED,
        RequestState.REJECTED,
        RequestState.TIMED_OUT,
        RequestState.CANCELLED,
    }),
}


@dataclass(frozen=True)
class StateChange:
    state: RequestState
    at: str
    detail: str | None = None

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {"state": self.state.value, "at": self.at}
        if self.detail is not None:
            result["detail"] = self.detail
        return result


@dataclass
class AttestationRequest:
    """One document's journey through the oracle.

    Attributes:
        document_id: Identity being attested.
        locator: Where the attested bytes live.
        state: Current state.
        request_id: Oracle-assigned id, set on SUBMITTED.
        submitted_at: RFC3339 UTC time of acceptance.
        report: Validated report, set on FINALIZED.
        error: Why the request ended, for non-FINALIZED terminal states.
        stale: Report issued_at was outside the staleness window.
        history: Every state the request has been in.
    """

    document_id: Digest
    locator: ContentLocator
    state: RequestState = RequestState.CREATED
    request_id: str | None = None
    submitted_at: str | None = None
    report: OracleReport | None = None
    error: StageError | None = None
    stale: bool = False
    history: list[StateChange] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(StateChange(self.state, now_utc()))

    @property
    def terminal(self) -> bool:
        return self.state.terminal

    def transition(
        self,
        new_state: RequestState,
        *,
        error: StageError | None = None,
        detail: str | None = None,
    ) -> None:
        """Move to ``new_state``.

        Raises:
            IntegrityFault: If the transition is not allowed.
        """
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise IntegrityFault(
                f"illegal request transition {self.state} -> {new_state}",
                error=StageError(
                    kind=ErrorKind.INTEGRITY_FAULT,
                    stage="oracle.request",
                    field="state",
                    expected=", ".join(sorted(allowed)) or "(terminal)",
                    actual=new_state.value,
                ),
            )
        self.state = new_state
        if error is not None:
            self.error = error
        self.history.append(StateChange(new_state, now_utc(), detail))
        logger.info(
            "Request %s -> %s",
            self.request_id or self.document_id.prefixed,
            new_state.value,
            extra={
                "document_id": self.document_id.prefixed,
                "request_id": self.request_id,
                "state": new_state.value,
            },
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "document_id": self.document_id.prefixed,
            "locator": self.locator.to_dict(),
            "state": self.state.value,
            "request_id": self.request_id,
            "submitted_at": self.submitted_at,
            "report": self.report.to_dict() if self.report else None,
            "error": self.error.to_dict() if self.error else None,
            "stale": self.stale,
            "history": [change.to_dict() for change in self.history],
        }
