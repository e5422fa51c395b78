"""
Engine configuration.

Configuration is a JSON document validated against
``schemas/engine.config.v0.1.json`` and then turned into frozen
dataclasses. Validation happens once, at load time; nothing downstream
re-checks shapes.

Policy knobs that have no universally right value (the oracle staleness
window, the ledger quorum) are explicit fields. The quorum defaults to a
simple majority of configured ledgers when omitted.

The config file path defaults to the ``NEXUS_PROOF_CONFIG`` environment
variable.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any, Literal, cast

import jsonschema  # type: ignore[import-untyped]

CONFIG_ENV_VAR = "NEXUS_PROOF_CONFIG"

LedgerKind = Literal["evm", "xrpl"]

_CONFIG_SCHEMA: dict[str, Any] | None = None


def load_schema(name: str) -> dict[str, Any]:
    """Load a bundled JSON schema by file name."""
    with resources.files("nexus_proof").joinpath(f"schemas/{name}").open(
        "r", encoding="utf-8"
    ) as f:
        return cast(dict[str, Any], json.load(f))


def validate(instance: Any, schema: dict[str, Any]) -> None:
    jsonschema.validate(instance=instance, schema=schema)


def _config_schema() -> dict[str, Any]:
    global _CONFIG_SCHEMA
    if _CONFIG_SCHEMA is None:
        _CONFIG_SCHEMA = load_schema("engine.config.v0.1.json")
    return _CONFIG_SCHEMA


def default_quorum(ledger_count: int) -> int:
    """Simple majority of configured ledgers."""
    return ledger_count // 2 + 1


# =========================================================================
# Policies
# =========================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """Retry and timeout policy for one class of external calls.

    Attributes:
        max_attempts: Attempts per call, including the first.
        backoff_min_s: First backoff delay; doubles each retry.
        backoff_max_s: Backoff ceiling.
        call_timeout_s: Timeout for each individual attempt.
    """

    max_attempts: int = 5
    backoff_min_s: float = 0.5
    backoff_max_s: float = 8.0
    call_timeout_s: float = 10.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got: {self.max_attempts}")
        if self.call_timeout_s <= 0:
            raise ValueError("call_timeout_s must be > 0")
        if self.backoff_min_s < 0 or self.backoff_max_s < self.backoff_min_s:
            raise ValueError("backoff bounds must satisfy 0 <= min <= max")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryPolicy:
        return cls(**data)


@dataclass(frozen=True)
class OraclePolicy:
    """How the engine talks to, and trusts, the oracle.

    Attributes:
        base_url: Oracle HTTP endpoint. None when a client is injected.
        authorized_keys: Hex-encoded Ed25519 public keys allowed to sign
            reports.
        poll_interval_s: Delay between status polls while pending.
        deadline_s: Wall-clock ceiling from submission to finalization.
        staleness_window_s: Reports older than this are accepted but
            flagged stale.
        max_clock_skew_s: Reports issued further than this in the future
            are accepted but flagged stale.
        retry: Retry policy for submit and poll calls.
    """

    base_url: str | None = None
    authorized_keys: tuple[str, ...] = ()
    poll_interval_s: float = 2.0
    deadline_s: float = 300.0
    staleness_window_s: float = 600.0
    max_clock_skew_s: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if self.deadline_s <= 0:
            raise ValueError("deadline_s must be > 0")
        if self.poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be > 0")
        if self.max_clock_skew_s < 0:
            raise ValueError("max_clock_skew_s must be >= 0")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OraclePolicy:
        return cls(
            base_url=data.get("base_url"),
            authorized_keys=tuple(data.get("authorized_keys", ())),
            poll_interval_s=data.get("poll_interval_s", 2.0),
            deadline_s=data.get("deadline_s", 300.0),
            staleness_window_s=data.get("staleness_window_s", 600.0),
            max_clock_skew_s=data.get("max_clock_skew_s", 30.0),
            retry=RetryPolicy.from_dict(data.get("retry", {})),
        )


@dataclass(frozen=True)
class LedgerConfig:
    """One target ledger.

    Attributes:
        chain_id: Stable identifier used as the key in artifacts.
        kind: Which JSON-RPC dialect the ledger speaks.
        url: JSON-RPC endpoint. None when a client is injected.
        required_depth: Confirmations needed before the chain counts.
        poll_interval_s: Delay between status queries.
        not_found_grace_s: How long a relay tx may stay unseen.
        timeout_s: Wall-clock ceiling for this ledger.
        retry: Retry policy for status queries.
    """

    chain_id: str
    kind: LedgerKind = "evm"
    url: str | None = None
    required_depth: int = 12
    poll_interval_s: float = 5.0
    not_found_grace_s: float = 120.0
    timeout_s: float = 900.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if not self.chain_id:
            raise ValueError("chain_id must be non-empty")
        if self.required_depth < 1:
            raise ValueError(
                f"required_depth must be >= 1, got: {self.required_depth}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LedgerConfig:
        return cls(
            chain_id=data["chain_id"],
            kind=data.get("kind", "evm"),
            url=data.get("url"),
            required_depth=data.get("required_depth", 12),
            poll_interval_s=data.get("poll_interval_s", 5.0),
            not_found_grace_s=data.get("not_found_grace_s", 120.0),
            timeout_s=data.get("timeout_s", 900.0),
            retry=RetryPolicy.from_dict(data.get("retry", {})),
        )


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration.

    Attributes:
        oracle: Oracle policy.
        ledgers: Target ledgers, in configuration order.
        quorum: Ledgers that must confirm. None means simple majority.
        wait_for_all: Keep tracking every ledger after quorum is decided.
        storage_gateway_url: Optional HTTP gateway for content retrieval.
        storage_retry: Retry policy for content retrieval.
    """

    oracle: OraclePolicy
    ledgers: tuple[LedgerConfig, ...]
    quorum: int | None = None
    wait_for_all: bool = False
    storage_gateway_url: str | None = None
    storage_retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if not self.ledgers:
            raise ValueError("at least one ledger must be configured")
        ids = [ledger.chain_id for ledger in self.ledgers]
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate chain_id in ledgers: {ids}")
        if self.quorum is not None and not 1 <= self.quorum <= len(self.ledgers):
            raise ValueError(
                f"quorum must be between 1 and {len(self.ledgers)}, got: {self.quorum}"
            )

    @property
    def effective_quorum(self) -> int:
        if self.quorum is not None:
            return self.quorum
        return default_quorum(len(self.ledgers))

    def ledger(self, chain_id: str) -> LedgerConfig | None:
        for ledger in self.ledgers:
            if ledger.chain_id == chain_id:
                return ledger
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Validate against the config schema and build.

        Raises:
            jsonschema.ValidationError: If the document doesn't match the schema.
            ValueError: If cross-field constraints fail.
        """
        validate(data, _config_schema())
        storage = data.get("storage", {})
        return cls(
            oracle=OraclePolicy.from_dict(data["oracle"]),
            ledgers=tuple(LedgerConfig.from_dict(d) for d in data["ledgers"]),
            quorum=data.get("quorum"),
            wait_for_all=data.get("wait_for_all", False),
            storage_gateway_url=storage.get("gateway_url"),
            storage_retry=RetryPolicy.from_dict(storage.get("retry", {})),
        )


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load configuration from a JSON file.

    Args:
        path: Config file. Defaults to ``$NEXUS_PROOF_CONFIG``.

    Raises:
        ValueError: If no path is given and the env var is unset.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if not env_path:
            raise ValueError(
                f"no config path given and {CONFIG_ENV_VAR} is not set"
            )
        path = env_path
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return EngineConfig.from_dict(data)
