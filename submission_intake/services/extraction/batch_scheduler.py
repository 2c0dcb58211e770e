"""Bounded-concurrency batch runner for per-field extraction."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Type, TypeVar

from submission_intake.services.extraction.models import FieldOutcome
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


@dataclass
class BatchRun:
    """Outcome of a scheduler run.

    ``outcomes`` is aligned with the input items. Items that never produced
    an outcome (their batch was stopped, or no batch started for them) hold
    ``None``; ``stopped_by`` carries the exception that ended the run early.
    """

    outcomes: List[Optional[FieldOutcome]] = field(default_factory=list)
    stopped_by: Optional[BaseException] = None

    @property
    def completed(self) -> List[FieldOutcome]:
        return [o for o in self.outcomes if o is not None]


class BatchScheduler:
    """Runs work items in fixed-size concurrent batches.

    Batches are separated by a short pause, or by a longer cooldown when any
    item in the finished batch reported exhausted rate-limit retries.
    """

    def __init__(
        self,
        batch_size: int = 5,
        pause_seconds: float = 1.0,
        cooldown_seconds: float = 5.0,
        sleep=asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self.pause_seconds = pause_seconds
        self.cooldown_seconds = cooldown_seconds
        self.sleep = sleep

    async def run(
        self,
        items: Sequence[T],
        worker: Callable[[T], Awaitable[FieldOutcome]],
        stop_on: Tuple[Type[BaseException], ...] = (),
    ) -> BatchRun:
        """Run ``worker`` over ``items``; outcomes keep input order.

        Once a batch settles, an exception listed in ``stop_on`` ends the run
        and is returned on the result together with every outcome finished so
        far. Any other exception is re-raised and no further batches start.
        """
        run = BatchRun(outcomes=[None] * len(items))
        batches = [items[i:i + self.batch_size] for i in range(0, len(items), self.batch_size)]

        for number, batch in enumerate(batches, start=1):
            offset = (number - 1) * self.batch_size
            results = await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)

            errors = [r for r in results if isinstance(r, BaseException)]
            fatal = [e for e in errors if not isinstance(e, stop_on)]
            if fatal:
                LOGGER.error(
                    f"Batch {number}/{len(batches)} aborted: {type(fatal[0]).__name__}: {fatal[0]}"
                )
                raise fatal[0]

            for index, result in enumerate(results):
                if not isinstance(result, BaseException):
                    run.outcomes[offset + index] = result

            if errors:
                run.stopped_by = errors[0]
                LOGGER.warning(
                    f"Batch {number}/{len(batches)} stopped the run: {type(errors[0]).__name__}: {errors[0]}",
                    extra={"completed": len(run.completed), "total": len(items)},
                )
                return run

            rate_limited = sum(1 for r in results if r.rate_limited)
            LOGGER.info(
                f"Batch {number}/{len(batches)} complete",
                extra={"batch_size": len(batch), "rate_limited": rate_limited},
            )

            if number == len(batches):
                break
            if rate_limited:
                LOGGER.warning(
                    f"{rate_limited} field(s) exhausted rate-limit retries; "
                    f"cooling down {self.cooldown_seconds}s"
                )
                await self.sleep(self.cooldown_seconds)
            elif self.pause_seconds:
                await self.sleep(self.pause_seconds)

        return run
