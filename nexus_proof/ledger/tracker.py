"""
Confirmation tracking across independent ledgers.

Per ledger (ChainTracker):
    unconfirmed -> pending -> confirmed | failed

    confirmed  confirmation_count >= required_depth
    failed     one of:
                 NO_RELAY    the oracle reported no relay tx for the chain
                 NOT_FOUND   still unseen after not_found_grace_s
                 REVERTED    included but failed on-chain
                 REORGED     seen in a block earlier, now gone
                 ERROR:<c>   the node returned an explicit error
                 TIMEOUT     the ledger's timeout_s ceiling passed

Across ledgers (ConfirmationTracker):
    Every ChainTracker runs as its own asyncio task and is the only
    writer of its record. The aggregator reads snapshots and recomputes
    the quorum after every change notification.

Invariants:
    - A terminal record (confirmed/failed) is never overwritten.
    - Once the aggregate is terminal, remaining trackers are cancelled
      and keep their last recorded state, unless wait_for_all is set.
    - cutoff() stops tracking with whatever aggregate holds (usually
      pending).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from nexus_proof.config import LedgerConfig, default_quorum
from nexus_proof.errors import (
    ErrorKind,
    IntegrityFault,
    StageError,
    TransientNetworkError,
    ValidationError,
)
from nexus_proof.ledger.client import LedgerClient, TxStatus
from nexus_proof.ledger.quorum import AggregateStatus, ChainStatus, aggregate_status
from nexus_proof.retry import call_with_retry

logger = logging.getLogger(__name__)

NO_RELAY = "NO_RELAY"
NOT_FOUND = "NOT_FOUND"
REVERTED = "REVERTED"
REORGED = "REORGED"
TIMEOUT = "TIMEOUT"


# =========================================================================
# ChainConfirmation
# =========================================================================


@dataclass(frozen=True)
class ChainConfirmation:
    """Snapshot of one ledger's confirmation state.

    Attributes:
        chain_id: Ledger identifier.
        transaction_ref: Relay transaction reference, if one was reported.
        block_height: Including block, once seen.
        confirmation_count: Confirmations observed so far.
        status: Per-chain status.
        required_depth: Confirmations needed for CONFIRMED.
        failure_reason: Why the chain failed. None unless FAILED.
    """

    chain_id: str
    status: ChainStatus
    required_depth: int
    transaction_ref: str | None = None
    block_height: int | None = None
    confirmation_count: int = 0
    failure_reason: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "chain_id": self.chain_id,
            "transaction_ref": self.transaction_ref,
            "block_height": self.block_height,
            "confirmation_count": self.confirmation_count,
            "status": self.status.value,
            "required_depth": self.required_depth,
            "failure_reason": self.failure_reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChainConfirmation:
        return cls(
            chain_id=data["chain_id"],
            status=ChainStatus(data["status"]),
            required_depth=data["required_depth"],
            transaction_ref=data.get("transaction_ref"),
            block_height=data.get("block_height"),
            confirmation_count=data.get("confirmation_count", 0),
            failure_reason=data.get("failure_reason"),
        )


# =========================================================================
# Per-ledger tracker
# =========================================================================


class ChainTracker:
    """Tracks one relay transaction on one ledger.

    Args:
        config: Depth, poll interval, grace period, timeout and retries.
        client: Ledger client for ``config.chain_id``.
        on_change: Called after every record change.
        clock: Monotonic clock for the not-found grace period.
    """

    def __init__(
        self,
        config: LedgerConfig,
        client: LedgerClient,
        on_change: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._client = client
        self._on_change = on_change
        self._clock = clock
        self._record = ChainConfirmation(
            chain_id=config.chain_id,
            status=ChainStatus.UNCONFIRMED,
            required_depth=config.required_depth,
        )

    @property
    def chain_id(self) -> str:
        return self._config.chain_id

    @property
    def record(self) -> ChainConfirmation:
        return self._record

    def _set(self, record: ChainConfirmation) -> None:
        if self._record.status.terminal:
            raise IntegrityFault(
                f"{self.chain_id}: refusing to overwrite terminal record",
                error=StageError(
                    kind=ErrorKind.INTEGRITY_FAULT,
                    stage=f"ledger:{self.chain_id}",
                    field="status",
                    expected=self._record.status.value,
                    actual=record.status.value,
                ),
            )
        if record == self._record:
            return
        self._record = record
        if record.status.terminal:
            logger.info(
                "Chain %s %s%s",
                self.chain_id,
                record.status.value,
                f" ({record.failure_reason})" if record.failure_reason else "",
                extra={
                    "chain_id": self.chain_id,
                    "status": record.status.value,
                    "failure_reason": record.failure_reason,
                },
            )
        if self._on_change is not None:
            self._on_change()

    def _fail(self, reason: str) -> None:
        self._set(
            ChainConfirmation(
                chain_id=self.chain_id,
                status=ChainStatus.FAILED,
                required_depth=self._config.required_depth,
                transaction_ref=self._record.transaction_ref,
                block_height=self._record.block_height,
                confirmation_count=self._record.confirmation_count,
                failure_reason=reason,
            )
        )

    async def run(self, transaction_ref: str | None) -> ChainConfirmation:
        """Track ``transaction_ref`` until terminal or until ``timeout_s``."""
        if transaction_ref is None:
            self._fail(NO_RELAY)
            return self._record

        self._record = ChainConfirmation(
            chain_id=self.chain_id,
            status=ChainStatus.UNCONFIRMED,
            required_depth=self._config.required_depth,
            transaction_ref=transaction_ref,
        )
        try:
            async with asyncio.timeout(self._config.timeout_s):
                await self._track(transaction_ref)
        except TimeoutError:
            if not self._record.status.terminal:
                self._fail(TIMEOUT)
        return self._record

    async def _track(self, transaction_ref: str) -> None:
        started = self._clock()
        seen_height: int | None = None

        while True:
            try:
                status = await call_with_retry(
                    lambda: self._client.get_transaction_status(transaction_ref),
                    self._config.retry,
                    what=f"{self.chain_id} status",
                )
            except TransientNetworkError as exc:
                logger.warning(
                    "Status round for %s exhausted retries, continuing: %s",
                    self.chain_id,
                    exc,
                    extra={"chain_id": self.chain_id},
                )
            except ValidationError as exc:
                logger.warning(
                    "%s: status query refused: %s", self.chain_id, exc,
                    extra={"chain_id": self.chain_id},
                )
                self._fail("ERROR:VALIDATION")
                return
            except IntegrityFault:
                raise
            except Exception as exc:
                # A broken client fails its own chain, never the others.
                logger.error(
                    "%s: status query raised %s: %s",
                    self.chain_id,
                    type(exc).__name__,
                    exc,
                    extra={"chain_id": self.chain_id},
                )
                self._fail(f"ERROR:{type(exc).__name__}")
                return
            else:
                seen_height = self._observe(transaction_ref, status, seen_height, started)
                if self._record.status.terminal:
                    return

            await asyncio.sleep(self._config.poll_interval_s)

    def _observe(
        self,
        transaction_ref: str,
        status: TxStatus,
        seen_height: int | None,
        started: float,
    ) -> int | None:
        if status.error_code is not None:
            self._fail(f"ERROR:{status.error_code}")
            return seen_height

        if not status.found or status.block_height is None:
            if seen_height is not None:
                logger.warning(
                    "%s: tx %s left block %d",
                    self.chain_id,
                    transaction_ref,
                    seen_height,
                    extra={"chain_id": self.chain_id},
                )
                self._fail(REORGED)
            elif self._clock() - started > self._config.not_found_grace_s:
                self._fail(NOT_FOUND)
            return seen_height

        if status.reverted:
            self._set(
                ChainConfirmation(
                    chain_id=self.chain_id,
                    status=ChainStatus.FAILED,
                    required_depth=self._config.required_depth,
                    transaction_ref=transaction_ref,
                    block_height=status.block_height,
                    confirmation_count=status.confirmation_count,
                    failure_reason=REVERTED,
                )
            )
            return status.block_height

        if seen_height is not None and status.block_height != seen_height:
            logger.warning(
                "%s: tx %s re-included at block %d (was %d)",
                self.chain_id,
                transaction_ref,
                status.block_height,
                seen_height,
                extra={"chain_id": self.chain_id},
            )

        confirmed = status.confirmation_count >= self._config.required_depth
        self._set(
            ChainConfirmation(
                chain_id=self.chain_id,
                status=ChainStatus.CONFIRMED if confirmed else ChainStatus.PENDING,
                required_depth=self._config.required_depth,
                transaction_ref=transaction_ref,
                block_height=status.block_height,
                confirmation_count=status.confirmation_count,
            )
        )
        return status.block_height


# =========================================================================
# Aggregator
# =========================================================================


@dataclass(frozen=True)
class TrackingOutcome:
    """Result of a tracking run.

    Attributes:
        confirmations: chain_id -> last recorded state.
        aggregate: Quorum outcome at the moment tracking stopped.
        quorum: The k used.
        cut_off: Tracking was stopped by cutoff().
    """

    confirmations: dict[str, ChainConfirmation]
    aggregate: AggregateStatus
    quorum: int
    cut_off: bool = False


class ConfirmationTracker:
    """Runs one ChainTracker per configured ledger and applies the quorum.

    Args:
        ledgers: Configured ledgers.
        clients: chain_id -> LedgerClient, one per configured ledger.
        quorum: k. Defaults to a simple majority.
        wait_for_all: Keep tracking until every ledger is terminal.
        clock: Monotonic clock passed to each ChainTracker.

    Raises:
        ValueError: If a ledger has no client, or quorum is out of range.
    """

    def __init__(
        self,
        ledgers: Sequence[LedgerConfig],
        clients: Mapping[str, LedgerClient],
        *,
        quorum: int | None = None,
        wait_for_all: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        missing = [ledger.chain_id for ledger in ledgers if ledger.chain_id not in clients]
        if missing:
            raise ValueError(f"no ledger client for: {', '.join(missing)}")
        self._quorum = quorum if quorum is not None else default_quorum(len(ledgers))
        if not 1 <= self._quorum <= len(ledgers):
            raise ValueError(
                f"quorum must be between 1 and {len(ledgers)}, got: {self._quorum}"
            )
        self._wait_for_all = wait_for_all
        self._changed = asyncio.Event()
        self._cutoff_requested = False
        self._trackers = {
            ledger.chain_id: ChainTracker(
                ledger, clients[ledger.chain_id], self._changed.set, clock
            )
            for ledger in ledgers
        }

    @property
    def quorum(self) -> int:
        return self._quorum

    def snapshot(self) -> dict[str, ChainConfirmation]:
        return {cid: tracker.record for cid, tracker in self._trackers.items()}

    @property
    def aggregate(self) -> AggregateStatus:
        return aggregate_status(
            (record.status for record in self.snapshot().values()), self._quorum
        )

    def cutoff(self) -> None:
        """Stop tracking now. run() returns with the current aggregate."""
        self._cutoff_requested = True
        self._changed.set()

    def _done(self) -> bool:
        if all(record.status.terminal for record in self.snapshot().values()):
            return True
        return self.aggregate.terminal and not self._wait_for_all

    async def run(self, relays: Mapping[str, str]) -> TrackingOutcome:
        """Track every configured ledger until the quorum is decided.

        Args:
            relays: chain_id -> transaction_ref as reported by the oracle.
                Configured chains missing here fail with NO_RELAY.

        Raises:
            IntegrityFault: If a tracker violated its own invariants.
        """
        tasks = {
            cid: asyncio.create_task(tracker.run(relays.get(cid)), name=f"ledger:{cid}")
            for cid, tracker in self._trackers.items()
        }
        for task in tasks.values():
            task.add_done_callback(lambda _: self._changed.set())
        try:
            while True:
                self._changed.clear()
                for task in tasks.values():
                    if task.done() and not task.cancelled():
                        exc = task.exception()
                        if exc is not None:
                            raise exc
                if self._cutoff_requested or self._done():
                    break
                await self._changed.wait()
        finally:
            for task in tasks.values():
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)

        aggregate = self.aggregate
        logger.info(
            "Quorum %s (%d of %d required)%s",
            aggregate.value,
            self._quorum,
            len(self._trackers),
            " after cutoff" if self._cutoff_requested else "",
            extra={"aggregate_status": aggregate.value, "quorum": self._quorum},
        )
        return TrackingOutcome(
            confirmations=self.snapshot(),
            aggregate=aggregate,
            quorum=self._quorum,
            cut_off=self._cutoff_requested,
        )
