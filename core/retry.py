"""
Phase retry policy.

Bounded retry of one workflow phase (upload or query) on the same engine.
Only errors flagged ``retryable`` are retried; anything else propagates at
once. On the last allowed retryable failure the phase gives up with
``PhaseExhaustedError`` without making a further attempt.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from core.errors import PhaseExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
RecoveryHook = Callable[[int, BaseException], Awaitable[None]]


@dataclass
class PhaseRetryPolicy:
    """
    Retry settings for one phase.

    Args:
        phase: Name used in logs and in ``PhaseExhaustedError``
        max_attempts: Total attempts including the first one
        base_delay: Backoff after attempt n is ``n * base_delay`` seconds...
        jitter: ...plus a random extra of up to ``jitter`` seconds
        retry_on: Exception types to retry. When empty, the error's
            ``retryable`` attribute decides.
    """
    phase: str
    max_attempts: int = 3
    base_delay: float = 5.0
    jitter: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = ()

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def backoff(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        rng = rng or random
        return attempt * self.base_delay + rng.uniform(0, self.jitter)

    def is_retryable(self, error: BaseException) -> bool:
        if self.retry_on:
            return isinstance(error, self.retry_on)
        return bool(getattr(error, "retryable", False))

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        recover: Optional[RecoveryHook] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> Tuple[T, int]:
        """
        Run ``operation(attempt)`` until it succeeds or the budget is spent.

        ``recover(attempt, error)`` runs after each retryable failure, before
        the backoff sleep. Returns ``(result, attempts_used)``.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await operation(attempt)
                return result, attempt
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                if attempt >= self.max_attempts:
                    logger.error(f"{self.phase} phase exhausted {attempt}/{self.max_attempts} attempts: {e}")
                    raise PhaseExhaustedError(self.phase, attempt, e) from e

                delay = self.backoff(attempt, rng)
                logger.warning(
                    f"{self.phase} attempt {attempt}/{self.max_attempts} failed ({e}); "
                    f"retrying in {delay:.1f}s"
                )
                if recover:
                    await recover(attempt, e)
                await sleep(delay)

        # Unreachable: the loop either returns or raises
        raise RuntimeError(f"{self.phase} retry loop ended without a result")
