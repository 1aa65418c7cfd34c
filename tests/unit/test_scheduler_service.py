"""Unit tests for the EmbeddingScheduler loop (asyncio, fake runners, no DB)."""

from __future__ import annotations

import asyncio
from typing import Sequence

import pytest

from embedq.core.models.scheduler import SchedulerConfig
from embedq.core.models.task import EmbeddingWork, SchedulerStatus
from embedq.core.scheduler.service import EmbeddingScheduler

pytestmark = pytest.mark.unit

VECTOR = [0.1, 0.2, 0.3]


class RecordingRunner:
    """Runner that records execution order and tracks peak concurrency."""

    def __init__(self, delay: float = 0.0, fail_times: int = 0) -> None:
        self.delay = delay
        self.fail_times = fail_times
        self.calls: list[EmbeddingWork] = []
        self.active = 0
        self.peak = 0

    async def run(self, work: EmbeddingWork) -> Sequence[float]:
        self.calls.append(work)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            if self.fail_times > 0:
                self.fail_times -= 1
                raise RuntimeError('provider unavailable')
            return VECTOR
        finally:
            self.active -= 1


class BlockingRunner:
    """Runner whose calls never finish until released."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.started = 0

    async def run(self, work: EmbeddingWork) -> Sequence[float]:
        self.started += 1
        await self.release.wait()
        return VECTOR


def _config(**overrides: int) -> SchedulerConfig:
    base = {'max_concurrent': 3, 'retry_delay_ms': 1, 'max_retries': 3, 'batch_size': 5}
    base.update(overrides)
    return SchedulerConfig(**base)


@pytest.mark.asyncio
async def test_enqueue_starts_loop_and_processes_task() -> None:
    runner = RecordingRunner()
    scheduler = EmbeddingScheduler(_config(), runner)

    task_id = scheduler.enqueue('recommendation', 42, {'id': 42}, 'high')

    assert task_id.startswith('recommendation-42-')
    assert scheduler.is_running
    assert await scheduler.wait_idle(timeout=2.0)
    assert [w.entity_id for w in runner.calls] == [42]
    assert scheduler.get_status() == SchedulerStatus(0, 0, False)
    await scheduler.stop()


@pytest.mark.asyncio
async def test_priority_order_with_single_slot() -> None:
    """With one slot, tasks enqueued low, high, normal run high, normal, low."""
    runner = RecordingRunner()
    scheduler = EmbeddingScheduler(_config(max_concurrent=1), runner)

    scheduler.enqueue('recommendation', 1, {'id': 1}, 'low')
    scheduler.enqueue('recommendation', 2, {'id': 2}, 'high')
    scheduler.enqueue('recommendation', 3, {'id': 3}, 'normal')

    assert await scheduler.wait_idle(timeout=2.0)
    assert [w.entity_id for w in runner.calls] == [2, 3, 1]
    await scheduler.stop()


@pytest.mark.asyncio
async def test_processing_never_exceeds_max_concurrent() -> None:
    runner = RecordingRunner(delay=0.02)
    scheduler = EmbeddingScheduler(_config(max_concurrent=3), runner)

    for entity_id in range(1, 11):
        scheduler.enqueue('recommendation', entity_id)

    samples: list[int] = []
    while scheduler.get_status().is_processing:
        samples.append(scheduler.get_status().processing)
        await asyncio.sleep(0.005)

    assert len(runner.calls) == 10
    assert runner.peak == 3
    assert max(samples) <= 3
    await scheduler.stop()


@pytest.mark.asyncio
async def test_batch_size_limits_a_single_pass() -> None:
    runner = BlockingRunner()
    scheduler = EmbeddingScheduler(_config(max_concurrent=10, batch_size=2), runner)

    # Enqueue from a thread so the loop is not auto-started
    for entity_id in range(1, 6):
        await asyncio.to_thread(scheduler.enqueue, 'recommendation', entity_id)
    assert not scheduler.is_running

    scheduler._dispatch_pass()

    assert scheduler.get_status() == SchedulerStatus(
        queue_length=3, processing=2, is_processing=True
    )
    await scheduler.stop(drain_timeout=0)


@pytest.mark.asyncio
async def test_always_failing_task_attempted_max_retries_plus_one() -> None:
    runner = RecordingRunner(fail_times=1_000)
    scheduler = EmbeddingScheduler(_config(max_retries=2), runner)

    scheduler.enqueue('annotation', 5, {'id': 5})

    assert await scheduler.wait_idle(timeout=2.0)
    assert len(runner.calls) == 3
    assert scheduler.get_status().queue_length == 0

    [record] = scheduler.failed_tasks()
    assert record.entity_id == 5
    assert record.attempts == 3
    assert 'provider unavailable' in record.error

    # No further attempts after terminal failure
    await asyncio.sleep(0.05)
    assert len(runner.calls) == 3
    await scheduler.stop()


@pytest.mark.asyncio
async def test_transient_failure_then_success() -> None:
    runner = RecordingRunner(fail_times=1)
    scheduler = EmbeddingScheduler(_config(retry_delay_ms=20), runner)

    scheduler.enqueue('recommendation', 7)

    assert await scheduler.wait_idle(timeout=2.0)
    assert len(runner.calls) == 2
    assert scheduler.failed_tasks() == []
    await scheduler.stop()


@pytest.mark.asyncio
async def test_retry_waits_for_backoff() -> None:
    runner = RecordingRunner(fail_times=1)
    scheduler = EmbeddingScheduler(_config(retry_delay_ms=200), runner)

    scheduler.enqueue('recommendation', 7)
    await asyncio.sleep(0.05)

    # First attempt failed; retry is still backing off
    assert len(runner.calls) == 1
    assert scheduler.get_status() == SchedulerStatus(1, 0, True)

    assert await scheduler.wait_idle(timeout=2.0)
    assert len(runner.calls) == 2
    await scheduler.stop()


@pytest.mark.asyncio
async def test_failing_task_does_not_block_others() -> None:
    class SelectiveRunner(RecordingRunner):
        async def run(self, work: EmbeddingWork) -> Sequence[float]:
            self.calls.append(work)
            if work.entity_id == 1:
                raise LookupError('recommendation 1 not found')
            return VECTOR

    runner = SelectiveRunner()
    scheduler = EmbeddingScheduler(_config(max_retries=1), runner)

    scheduler.enqueue('recommendation', 1)
    scheduler.enqueue('recommendation', 2)

    assert await scheduler.wait_idle(timeout=2.0)
    assert [w.entity_id for w in runner.calls].count(2) == 1
    assert [r.entity_id for r in scheduler.failed_tasks()] == [1]
    await scheduler.stop()


@pytest.mark.asyncio
async def test_clear_forgets_in_flight_work() -> None:
    runner = BlockingRunner()
    scheduler = EmbeddingScheduler(_config(max_concurrent=2), runner)

    for entity_id in (1, 2, 3):
        scheduler.enqueue('recommendation', entity_id)
    await asyncio.sleep(0.02)
    assert runner.started == 2

    scheduler.clear()
    assert scheduler.get_status() == SchedulerStatus(0, 0, False)

    # Late completions are ignored
    runner.release.set()
    await asyncio.sleep(0.02)
    assert scheduler.get_status() == SchedulerStatus(0, 0, False)
    assert runner.started == 2
    await scheduler.stop()


@pytest.mark.asyncio
async def test_enqueue_from_foreign_thread_wakes_loop() -> None:
    runner = RecordingRunner()
    async with EmbeddingScheduler(_config(), runner) as scheduler:
        await asyncio.sleep(0.01)

        await asyncio.to_thread(scheduler.enqueue, 'annotation', 11, {'id': 11})

        assert await scheduler.wait_idle(timeout=2.0)
        assert [w.entity_id for w in runner.calls] == [11]


@pytest.mark.asyncio
async def test_stop_cancels_and_requeues_in_flight_without_attempt() -> None:
    runner = BlockingRunner()
    scheduler = EmbeddingScheduler(_config(max_concurrent=1), runner)

    scheduler.enqueue('recommendation', 1)
    await asyncio.sleep(0.02)
    assert runner.started == 1

    await scheduler.stop(drain_timeout=0.01)

    assert not scheduler.is_running
    assert scheduler.get_status() == SchedulerStatus(1, 0, True)
    [task] = scheduler._queue.pop_eligible(float('inf'), 1)
    assert task.attempt == 0


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_within_drain_timeout() -> None:
    runner = RecordingRunner(delay=0.05)
    scheduler = EmbeddingScheduler(_config(), runner)

    scheduler.enqueue('recommendation', 1)
    await asyncio.sleep(0.01)

    await scheduler.stop(drain_timeout=2.0)

    assert scheduler.get_status() == SchedulerStatus(0, 0, False)
    assert len(runner.calls) == 1


@pytest.mark.asyncio
async def test_wait_idle_times_out() -> None:
    runner = BlockingRunner()
    scheduler = EmbeddingScheduler(_config(), runner)

    scheduler.enqueue('recommendation', 1)

    assert await scheduler.wait_idle(timeout=0.05) is False
    runner.release.set()
    assert await scheduler.wait_idle(timeout=2.0) is True
    await scheduler.stop()


@pytest.mark.asyncio
async def test_start_is_idempotent_and_restartable() -> None:
    runner = RecordingRunner()
    scheduler = EmbeddingScheduler(_config(), runner)

    await scheduler.start()
    first = scheduler._loop_task
    await scheduler.start()
    assert scheduler._loop_task is first

    await scheduler.stop()
    assert not scheduler.is_running

    await scheduler.start()
    scheduler.enqueue('recommendation', 3)
    assert await scheduler.wait_idle(timeout=2.0)
    assert len(runner.calls) == 1
    await scheduler.stop()


@pytest.mark.asyncio
async def test_duplicate_enqueues_both_reach_the_runner() -> None:
    runner = RecordingRunner()
    scheduler = EmbeddingScheduler(_config(), runner)

    first = scheduler.enqueue('recommendation', 9, {'id': 9})
    second = scheduler.enqueue('recommendation', 9, {'id': 9, 'title': 'Idli'})

    assert await scheduler.wait_idle(timeout=2.0)
    assert [w.entity_id for w in runner.calls] == [9, 9]
    assert [w.task_id for w in runner.calls] == [first, second]
    assert runner.calls[1].payload['title'] == 'Idli'
    await scheduler.stop()


@pytest.mark.asyncio
async def test_runner_returning_no_vector_counts_as_failure() -> None:
    class NoneRunner:
        async def run(self, work: EmbeddingWork) -> Sequence[float]:
            return None  # type: ignore[return-value]

    scheduler = EmbeddingScheduler(_config(max_retries=0), NoneRunner())

    scheduler.enqueue('annotation', 4)

    assert await scheduler.wait_idle(timeout=2.0)
    [record] = scheduler.failed_tasks()
    assert record.entity_id == 4
    assert record.error.startswith('TypeError')
    await scheduler.stop()


@pytest.mark.asyncio
async def test_clear_between_dispatch_and_start_skips_workers() -> None:
    runner = BlockingRunner()
    scheduler = EmbeddingScheduler(_config(max_concurrent=2), runner)

    # Enqueue from a thread so the loop is not auto-started
    for entity_id in (1, 2):
        await asyncio.to_thread(scheduler.enqueue, 'recommendation', entity_id)

    scheduler._dispatch_pass()
    scheduler.clear()
    await asyncio.sleep(0.02)

    assert runner.started == 0
    assert scheduler.get_status() == SchedulerStatus(0, 0, False)
    await scheduler.stop()
