"""
Fixed-delay retry policy for camera commands
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 3
RETRY_DELAY_SEC = 2.0


@dataclass(frozen=True)
class RetryPolicy:
    """Run an operation up to max_attempts times, sleeping delay seconds between tries.

    No jitter, no backoff growth. The last attempt's exception is re-raised as-is.
    """
    max_attempts: int = MAX_ATTEMPTS
    delay: float = RETRY_DELAY_SEC

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")

    async def run(self, operation: Callable[[], Awaitable[T]], name: str = "operation") -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if attempt == self.max_attempts:
                    raise
                logger.warning(
                    f"⚠️  {name} failed (attempt {attempt}/{self.max_attempts}): {e} "
                    f"- retrying in {self.delay:.0f}s..."
                )
                await asyncio.sleep(self.delay)
        # unreachable: the loop either returns or raises
        raise RuntimeError(f"{name} failed after {self.max_attempts} attempts")


NO_RETRY = RetryPolicy(max_attempts=1, delay=0)
