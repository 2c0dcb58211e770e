import asyncio

import pytest
from unittest.mock import call

from submission_intake.core.exceptions import LLMAuthenticationError, QuotaExceededError
from submission_intake.services.extraction.batch_scheduler import BatchScheduler
from submission_intake.services.extraction.models import FieldExtractionRecord, FieldOutcome


def _outcome(name, rate_limited=False):
    return FieldOutcome(record=FieldExtractionRecord(field_path=name, field_name=name), rate_limited=rate_limited)


class TestBatchScheduler:

    @pytest.mark.asyncio
    async def test_results_keep_input_order(self, no_sleep):
        async def worker(item):
            await asyncio.sleep(0.01 * (5 - item))
            return _outcome(f"f{item}")

        run = await BatchScheduler(batch_size=5, sleep=no_sleep).run(list(range(5)), worker)
        assert run.stopped_by is None
        assert [o.record.field_path for o in run.outcomes] == ["f0", "f1", "f2", "f3", "f4"]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded_by_batch_size(self, no_sleep):
        active = 0
        peak = 0

        async def worker(item):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            active -= 1
            return _outcome(str(item))

        run = await BatchScheduler(batch_size=3, sleep=no_sleep).run(list(range(7)), worker)

        assert len(run.completed) == 7
        assert peak == 3

    @pytest.mark.asyncio
    async def test_pause_between_batches_but_not_after_last(self, no_sleep):
        async def worker(item):
            return _outcome(str(item))

        scheduler = BatchScheduler(batch_size=2, pause_seconds=1.0, cooldown_seconds=5.0, sleep=no_sleep)
        await scheduler.run(list(range(5)), worker)

        assert no_sleep.await_args_list == [call(1.0), call(1.0)]

    @pytest.mark.asyncio
    async def test_cooldown_after_rate_limited_batch(self, no_sleep):
        async def worker(item):
            return _outcome(str(item), rate_limited=item == 1)

        scheduler = BatchScheduler(batch_size=2, pause_seconds=1.0, cooldown_seconds=5.0, sleep=no_sleep)
        await scheduler.run(list(range(4)), worker)

        assert no_sleep.await_args_list == [call(5.0)]

    @pytest.mark.asyncio
    async def test_first_error_aborts_after_batch_settles(self, no_sleep):
        started = []

        async def worker(item):
            started.append(item)
            if item == 0:
                raise LLMAuthenticationError("401")
            return _outcome(str(item))

        with pytest.raises(LLMAuthenticationError):
            await BatchScheduler(batch_size=2, sleep=no_sleep).run(list(range(4)), worker)

        assert sorted(started) == [0, 1]

    @pytest.mark.asyncio
    async def test_stop_error_returns_finished_outcomes(self, no_sleep):
        started = []

        async def worker(item):
            started.append(item)
            if item == 2:
                raise QuotaExceededError("insufficient_quota")
            return _outcome(f"f{item}")

        run = await BatchScheduler(batch_size=2, sleep=no_sleep).run(
            list(range(6)), worker, stop_on=(QuotaExceededError,)
        )

        assert isinstance(run.stopped_by, QuotaExceededError)
        assert [o.record.field_path if o else None for o in run.outcomes] == ["f0", "f1", None, "f3", None, None]
        assert sorted(started) == [0, 1, 2, 3]
        assert no_sleep.await_args_list == [call(1.0)]

    @pytest.mark.asyncio
    async def test_fatal_error_wins_over_stop_error_in_same_batch(self, no_sleep):
        async def worker(item):
            if item == 0:
                raise QuotaExceededError("insufficient_quota")
            raise LLMAuthenticationError("401")

        with pytest.raises(LLMAuthenticationError):
            await BatchScheduler(batch_size=2, sleep=no_sleep).run([0, 1], worker, stop_on=(QuotaExceededError,))

    def test_rejects_empty_batches(self):
        with pytest.raises(ValueError):
            BatchScheduler(batch_size=0)
