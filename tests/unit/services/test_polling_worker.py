import asyncio
from unittest.mock import AsyncMock, call

import pytest

from submission_intake.services.polling_worker import PollingWorker, WorkerState


class TestPollingWorker:

    @pytest.mark.asyncio
    async def test_drains_in_fifo_order(self, no_sleep):
        handled = []

        async def handler(identifier):
            handled.append(identifier)

        worker = PollingWorker(handler, sleep=no_sleep)
        assert worker.enqueue(["imap-1", "imap-2", "imap-3"]) == 3
        await worker.wait_idle()

        assert handled == ["imap-1", "imap-2", "imap-3"]
        assert worker.state is WorkerState.IDLE
        assert worker.pending == 0
        assert no_sleep.await_args_list == [call(0.5), call(0.5)]

    @pytest.mark.asyncio
    async def test_duplicates_are_not_queued(self, no_sleep):
        handler = AsyncMock()
        worker = PollingWorker(handler, sleep=no_sleep)

        assert worker.enqueue(["imap-1", "imap-1", "imap-2"]) == 2
        assert worker.enqueue(["imap-2"]) == 0
        await worker.wait_idle()

        assert handler.await_count == 2

    @pytest.mark.asyncio
    async def test_enqueue_while_draining_joins_the_same_drain(self, no_sleep):
        release = asyncio.Event()
        handled = []

        async def handler(identifier):
            if identifier == "imap-1":
                await release.wait()
            handled.append(identifier)

        worker = PollingWorker(handler, sleep=no_sleep)
        worker.enqueue(["imap-1"])
        await asyncio.sleep(0)
        first_task = worker._task

        assert worker.state is WorkerState.DRAINING
        assert worker.enqueue(["imap-2"]) == 1
        assert worker._task is first_task

        release.set()
        await worker.wait_idle()
        assert handled == ["imap-1", "imap-2"]

    @pytest.mark.asyncio
    async def test_retries_with_backoff(self, no_sleep):
        handler = AsyncMock(side_effect=[ConnectionError("imap reset"), ConnectionError("imap reset"), None])
        worker = PollingWorker(handler, sleep=no_sleep)

        worker.enqueue(["imap-1"])
        await worker.wait_idle()

        assert handler.await_count == 3
        assert no_sleep.await_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_gives_up_and_moves_on(self, no_sleep):
        async def handler(identifier):
            if identifier == "imap-bad":
                raise RuntimeError("cannot parse")
            handled.append(identifier)

        handled = []
        worker = PollingWorker(handler, sleep=no_sleep)
        worker.enqueue(["imap-bad", "imap-good"])
        await worker.wait_idle()

        assert handled == ["imap-good"]
        assert no_sleep.await_args_list == [call(1.0), call(2.0), call(0.5)]
        assert worker.pending == 0

    @pytest.mark.asyncio
    async def test_failed_item_can_be_enqueued_again(self, no_sleep):
        handler = AsyncMock(side_effect=RuntimeError("down"))
        worker = PollingWorker(handler, sleep=no_sleep)

        worker.enqueue(["imap-1"])
        await worker.wait_idle()

        handler.side_effect = None
        assert worker.enqueue(["imap-1"]) == 1
        await worker.wait_idle()
        assert handler.await_count == 4

    @pytest.mark.asyncio
    async def test_stop_cancels_drain(self, no_sleep):
        async def handler(identifier):
            await asyncio.Event().wait()

        worker = PollingWorker(handler, sleep=no_sleep)
        worker.enqueue(["imap-1"])
        await asyncio.sleep(0)

        await worker.stop()
        assert worker.state is WorkerState.IDLE
