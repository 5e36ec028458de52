# agentfleet/retry.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from agentfleet.errors import TransportFault

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff for callers that legitimately want retries
    (config fetches, clock sync, listen keys). Order placement never uses it.
    """
    max_attempts: int = 3
    base_delay: float = 2.0
    backoff_multiplier: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = (TransportFault,)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return self.base_delay * (self.backoff_multiplier ** (attempt - 1))

    async def call(self, fn: Callable[..., Awaitable[T]], *args, description: str = "", sleep=asyncio.sleep, **kwargs) -> T:
        label = description or getattr(fn, "__name__", "call")
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn(*args, **kwargs)
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logging.error(f"{label} failed after {attempt} attempts: {e}")
                    raise
                delay = self.delay_for(attempt)
                logging.warning(f"{label} failed (attempt {attempt}/{self.max_attempts}): {e}. Retrying in {delay:.1f}s")
                await sleep(delay)
        raise RuntimeError("unreachable")


NO_RETRY = RetryPolicy(max_attempts=1)
