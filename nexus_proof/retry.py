"""
Bounded retry for calls to external services.

Every external call (oracle submit/poll, ledger query, content fetch)
goes through ``call_with_retry``:

    - Each attempt is wrapped in ``asyncio.wait_for`` with the policy's
      ``call_timeout_s``. A timeout becomes TransientNetworkError.
    - TransientNetworkError (and raw httpx transport errors, which are
      classified on the way through) are retried with exponential
      backoff, up to ``max_attempts``.
    - Anything else propagates immediately.
    - When attempts run out, the last TransientNetworkError is re-raised.

Cancellation is not caught: a cancelled task stops between attempts.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from nexus_proof.config import RetryPolicy
from nexus_proof.errors import ErrorKind, TransientNetworkError, classify_exception

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _attempt(
    fn: Callable[[], Awaitable[T]],
    timeout_s: float,
    what: str,
) -> T:
    try:
        return await asyncio.wait_for(fn(), timeout=timeout_s)
    except TransientNetworkError:
        raise
    except TimeoutError as exc:
        raise TransientNetworkError(f"{what} timed out after {timeout_s}s") from exc
    except Exception as exc:
        if classify_exception(exc) == ErrorKind.TRANSIENT_NETWORK:
            raise TransientNetworkError(f"{what} failed: {exc}") from exc
        raise


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    what: str,
) -> T:
    """Run ``fn`` under the retry policy.

    Args:
        fn: Zero-argument coroutine factory. Called once per attempt.
        policy: Attempt count, backoff bounds and per-call timeout.
        what: Short label for log lines and error messages.

    Returns:
        Whatever ``fn`` returns on its first successful attempt.

    Raises:
        TransientNetworkError: If every attempt failed transiently.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.backoff_min_s,
            min=policy.backoff_min_s,
            max=policy.backoff_max_s,
        ),
        retry=retry_if_exception_type(TransientNetworkError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            result = await _attempt(fn, policy.call_timeout_s, what)
    return result
