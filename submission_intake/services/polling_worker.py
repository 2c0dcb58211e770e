"""Single-flight FIFO worker for polled mailbox identifiers.

The worker owns its queue and its state; callers only ``enqueue``.
Enqueuing while a drain is running appends to the same queue. Each item is
handled with retries; an item that exhausts them is logged and dropped so
the rest of the queue keeps moving.
"""

import asyncio
import enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Set

from submission_intake.core.retry import RetryPolicy
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class WorkerState(str, enum.Enum):
    IDLE = "idle"
    DRAINING = "draining"


class PollingWorker:
    def __init__(
        self,
        handler: Callable[[str], Awaitable[Any]],
        retry_policy: Optional[RetryPolicy] = None,
        inter_message_delay: float = 0.5,
        sleep=asyncio.sleep,
    ):
        self.handler = handler
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=1.0, multiplier=2.0, max_delay=10.0)
        self.inter_message_delay = inter_message_delay
        self.sleep = sleep
        self._queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._pending: Set[str] = set()
        self._state = WorkerState.IDLE
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def pending(self) -> int:
        return len(self._pending)

    def enqueue(self, identifiers: Iterable[str]) -> int:
        """Queue identifiers not already waiting or in flight; returns how many were added."""
        added = 0
        for identifier in identifiers:
            if identifier in self._pending:
                continue
            self._pending.add(identifier)
            self._queue.put_nowait(identifier)
            added += 1

        if added and self._state is WorkerState.IDLE:
            self._state = WorkerState.DRAINING
            self._task = asyncio.create_task(self._drain())
        return added

    async def wait_idle(self) -> None:
        """Wait for the current drain, if any, to finish."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                LOGGER.info("Polling worker stopped")

    async def _drain(self) -> None:
        try:
            first = True
            while not self._queue.empty():
                identifier = self._queue.get_nowait()
                if not first and self.inter_message_delay:
                    await self.sleep(self.inter_message_delay)
                first = False
                try:
                    await self._handle(identifier)
                finally:
                    self._pending.discard(identifier)
        finally:
            self._state = WorkerState.IDLE

    async def _handle(self, identifier: str) -> None:
        def log_retry(attempt: int, error: BaseException, delay: float) -> None:
            LOGGER.warning(
                f"Processing {identifier} failed (attempt {attempt}/{self.retry_policy.max_attempts}), "
                f"retrying in {delay:.1f}s: {error}"
            )

        try:
            await self.retry_policy.run(
                lambda: self.handler(identifier),
                sleep=self.sleep,
                on_retry=log_retry,
            )
        except Exception as e:
            LOGGER.error(
                f"Giving up on {identifier} after {self.retry_policy.max_attempts} attempts: {e}",
                exc_info=True,
            )
