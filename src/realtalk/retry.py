"""Bounded retry with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger("realtalk")

T = TypeVar("T")


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    jitter: float = 0.1

    def delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        base = self.initial_delay * (self.backoff_factor ** max(attempt - 1, 0))
        if self.jitter <= 0:
            return base
        spread = (rng or random).uniform(1.0 - self.jitter, 1.0 + self.jitter)
        return max(0.0, base * spread)


NO_RETRY = RetryPolicy(max_attempts=1, initial_delay=0.0, jitter=0.0)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "request",
) -> T:
    attempts = max(1, policy.max_attempts)
    attempt = 1
    while True:
        try:
            return await fn()
        except retry_on as exc:
            if attempt >= attempts:
                raise
            wait = policy.delay(attempt)
            logger.warning(
                "%s failed (attempt %s/%s): %s; retrying in %.2fs",
                label,
                attempt,
                attempts,
                exc,
                wait,
            )
            await sleep(wait)
            attempt += 1
