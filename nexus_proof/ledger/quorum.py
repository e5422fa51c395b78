"""
Quorum arithmetic over per-chain confirmation states.

With N configured ledgers and quorum k:
    confirmed  once confirmed >= k
    failed     once failed > N - k (k can no longer be reached)
    pending    otherwise

Pure functions. No I/O.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum


class ChainStatus(StrEnum):
    UNCONFIRMED = "unconfirmed"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ChainStatus.CONFIRMED, ChainStatus.FAILED)


class AggregateStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self != AggregateStatus.PENDING


def aggregate_status(statuses: Iterable[ChainStatus], quorum: int) -> AggregateStatus:
    """Combine per-chain statuses under quorum ``quorum``.

    Raises:
        ValueError: If quorum is outside 1..N.
    """
    statuses = list(statuses)
    total = len(statuses)
    if not 1 <= quorum <= total:
        raise ValueError(f"quorum must be between 1 and {total}, got: {quorum}")

    confirmed = sum(1 for s in statuses if s == ChainStatus.CONFIRMED)
    failed = sum(1 for s in statuses if s == ChainStatus.FAILED)

    if confirmed >= quorum:
        return AggregateStatus.CONFIRMED
    if failed > total - quorum:
        return AggregateStatus.FAILED
    return AggregateStatus.PENDING
