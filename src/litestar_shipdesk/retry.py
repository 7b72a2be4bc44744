"""Carrier API retry with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from litestar_shipdesk.exceptions import UpstreamIntegrationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff_delay(attempt: int, backoff_seconds: float) -> float:
    """Delay before retrying after ``attempt`` failures.

    delay = backoff_seconds * 2^(attempt - 1)
    """
    return backoff_seconds * (2 ** (attempt - 1))


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    backoff_seconds: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (UpstreamIntegrationError,),
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or attempts run out.

    Only exceptions in ``retry_on`` are retried; the last one is re-raised.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "%s failed after %d attempts: %s",
                    description,
                    attempt,
                    exc,
                )
                raise
            delay = compute_backoff_delay(attempt, backoff_seconds)
            logger.info(
                "%s attempt %d failed, retrying in %.1fs: %s",
                description,
                attempt,
                delay,
                exc,
            )
            await sleep(delay)
            attempt += 1
