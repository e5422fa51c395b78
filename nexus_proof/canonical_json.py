"""
Canonical JSON serialization for deterministic hashing.

Same approach as the rest of the attestation stack: sorted keys, no
whitespace, UTF-8. Two implementations computing a digest over the same
logical metadata must agree byte-for-byte, so the encoder is stricter
than ``json.dumps``:

    - Object keys must be strings. ``json.dumps`` silently coerces int
      keys to text, which would let ``{1: "a"}`` and ``{"1": "a"}``
      collide.
    - Every finite integral float is written as the integer it equals
      (``1.0`` -> ``1``, ``1e300`` -> its full digits), so a value
      carried as int by one producer and float by another hashes the
      same. ``-0.0`` is written as ``0``.
    - NaN and Infinity are rejected.
    - Anything that is not a JSON value (bytes, sets, Decimal, arbitrary
      objects) is rejected with the JSON path of the offending value.
"""

from __future__ import annotations

import json
import math
from typing import Any

from nexus_proof.errors import CanonicalizationError

def _normalize(value: Any, path: str) -> Any:
    """Return a JSON-ready copy of ``value`` or raise CanonicalizationError."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise CanonicalizationError(path, f"non-finite float {value!r}")
        if value.is_integer():
            return int(value)
        return value
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise CanonicalizationError(
                    path, f"object key {key!r} is {type(key).__name__}, not str"
                )
            out[key] = _normalize(item, f"{path}.{key}")
        return out
    if isinstance(value, (list, tuple)):
        return [_normalize(item, f"{path}[{i}]") for i, item in enumerate(value)]
    raise CanonicalizationError(
        path, f"{type(value).__name__} is not JSON-serializable"
    )


def canonical_json(obj: Any) -> str:
    """
    Serialize object to canonical JSON string.

    Rules:
    - Keys sorted by code point (recursive)
    - No whitespace
    - UTF-8 encoding (no ASCII escapes for non-ASCII chars)
    - Normalized number representation

    Raises:
        CanonicalizationError: If any value is not JSON-serializable.
    """
    return json.dumps(
        _normalize(obj, "$"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonical_json_bytes(obj: Any) -> bytes:
    """Serialize to canonical JSON as UTF-8 bytes."""
    return canonical_json(obj).encode("utf-8")


def _reject_constant(name: str) -> Any:
    raise CanonicalizationError("$", f"non-finite constant {name}")


def parse_canonical(data: str | bytes) -> Any:
    """Parse JSON text back into Python values.

    NaN/Infinity literals are rejected so that anything this returns can
    be fed straight back into ``canonical_json``.
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return json.loads(data, parse_constant=_reject_constant)
