"""Retry policy applied around visual oracle calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from hybridqa.errors import BackendUnavailableError
from hybridqa.models.config import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(policy: RetryConfig, attempt: int) -> float:
    """Seconds to wait before retry number ``attempt`` (1-based)."""
    base = policy.base_delay_ms / 1000
    if policy.backoff == "linear":
        return base * attempt
    return base * 2 ** (attempt - 1)


async def with_retries(
    call: Callable[[], Awaitable[T]],
    policy: RetryConfig,
    label: str = "call",
) -> T:
    """Run ``call`` with up to ``policy.count`` extra attempts.

    Timeouts and unavailable backends are not retried.
    """
    attempt = 0
    while True:
        try:
            return await call()
        except (BackendUnavailableError, asyncio.TimeoutError, TimeoutError, asyncio.CancelledError):
            raise
        except Exception as e:
            attempt += 1
            if attempt > policy.count:
                raise
            delay = backoff_delay(policy, attempt)
            logger.warning("%s failed (attempt %d/%d): %s; retrying in %.2fs",
                           label, attempt, policy.count + 1, e, delay)
            await asyncio.sleep(delay)
