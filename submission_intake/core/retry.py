"""Reusable exponential backoff policy.

One policy object describes how a call site retries: how many attempts,
the base delay and growth factor, an optional ceiling and jitter. The
policy honors a server-suggested delay (``retry_after`` on the raised
exception) over its own schedule.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]
RetryCallback = Callable[[int, BaseException, float], Any]


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters for one call site.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay in seconds after the first failure
        multiplier: Growth factor applied per failed attempt
        max_delay: Optional ceiling for any single delay
        jitter: Upper bound of uniform random seconds added to each delay
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: Optional[float] = None
    jitter: float = 0.0

    def compute_delay(self, attempt: int, suggested: Optional[float] = None) -> float:
        """Delay before the next attempt after ``attempt`` failures (1-based)."""
        if suggested is not None and suggested >= 0:
            delay = float(suggested)
        else:
            delay = self.base_delay * (self.multiplier ** max(attempt - 1, 0))

        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[Any]],
        *,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        give_up_on: Tuple[Type[BaseException], ...] = (),
        sleep: SleepFunc = asyncio.sleep,
        on_retry: Optional[RetryCallback] = None,
    ) -> Any:
        """Run ``operation`` until it succeeds or attempts run out.

        Exceptions outside ``retry_on``, or inside ``give_up_on``, propagate
        immediately. After the last attempt the final exception propagates.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except give_up_on:
                raise
            except retry_on as e:
                if attempt >= self.max_attempts:
                    raise

                delay = self.compute_delay(attempt, getattr(e, "retry_after", None))
                if on_retry is not None:
                    on_retry(attempt, e, delay)
                else:
                    LOGGER.debug(
                        f"Attempt {attempt}/{self.max_attempts} failed, retrying in {delay:.2f}s",
                        extra={"error": str(e)},
                    )
                await sleep(delay)
