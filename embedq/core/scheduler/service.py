# embedq/core/scheduler/service.py
from __future__ import annotations

import asyncio
import itertools
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from embedq.core.defaults import DEFAULT_DRAIN_TIMEOUT_S
from embedq.core.errors import AdmissionError, ErrorCode
from embedq.core.logging import get_logger
from embedq.core.models.scheduler import SchedulerConfig
from embedq.core.models.task import (
    EmbeddingTask,
    EmbeddingWork,
    FailedTask,
    SchedulerStatus,
    WorkerOutcome,
    make_task_id,
)
from embedq.core.protocols import TaskRunner
from embedq.core.scheduler.queue import PriorityTaskQueue
from embedq.core.types.status import EntityKind, TaskPriority, TaskStatus

logger = get_logger('scheduler')

# Pause after an unexpected error inside a scheduling pass.
_LOOP_ERROR_PAUSE_S = 1.0


class EmbeddingScheduler:
    """
    Background scheduler that drives embedding tasks to completion or terminal failure.

    Responsibilities:
    1. Admit units of work (enqueue) without waiting for them to run
    2. Dispatch eligible tasks in priority order, at most max_concurrent at a time
    3. Apply worker outcomes: drop on success, linear backoff retry on failure
    4. Drop tasks whose retries are exhausted and keep a bounded dead-letter record

    The pending queue, the in-flight table and the dead-letter record are the
    only shared state and are guarded by one lock, so enqueue(), get_status()
    and clear() may be called from any thread. Workers run as asyncio tasks on
    the scheduler's event loop and only return outcomes; the loop applies them.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        runner: TaskRunner,
        *,
        accepted_kinds: Optional[frozenset[EntityKind]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self._runner = runner
        self._accepted_kinds = accepted_kinds or frozenset(EntityKind)
        self._clock = clock

        self._lock = threading.Lock()
        self._queue = PriorityTaskQueue()
        # dispatch serial -> task; a task here is never in self._queue
        self._in_flight: dict[int, EmbeddingTask] = {}
        self._serials = itertools.count(1)
        self._dead_letter: deque[FailedTask] = deque(maxlen=config.dead_letter_size)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wake: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._workers: set[asyncio.Task[None]] = set()
        self._stop_requested = False

        logger.debug(
            f'Scheduler initialized: max_concurrent={config.max_concurrent}, '
            f'retry_delay_ms={config.retry_delay_ms}, max_retries={config.max_retries}, '
            f'batch_size={config.batch_size}'
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(
        self,
        entity_kind: EntityKind | str,
        entity_id: int,
        payload: Optional[Mapping[str, Any]] = None,
        priority: TaskPriority | str = TaskPriority.NORMAL,
    ) -> str:
        """
        Admit one unit of work and return its task id.

        Returning means "accepted for scheduling", not "embedding computed".
        Raises AdmissionError for an unknown entity kind, a non-positive or
        non-integer entity id, or a payload that is not a mapping. Unknown
        priorities fall back to normal.
        """
        kind = self._admit_kind(entity_kind)
        self._admit_entity_id(entity_id)
        snapshot = self._admit_payload(payload)
        resolved_priority = _coerce_priority(priority)

        enqueued_at = datetime.now(timezone.utc)
        work = EmbeddingWork(
            task_id=make_task_id(kind, entity_id, enqueued_at),
            entity_kind=kind,
            entity_id=entity_id,
            payload=snapshot,
            priority=resolved_priority,
            enqueued_at=enqueued_at,
        )
        task = EmbeddingTask(work=work, next_eligible_at=self._clock())

        with self._lock:
            self._queue.push(task)
            depth = len(self._queue)

        logger.info(
            f'Queued embedding task: {work.task_id} ({kind.value} {entity_id}, '
            f'priority={resolved_priority.value}, queue_length={depth})'
        )

        self._ensure_started()
        self._notify()
        return work.task_id

    def get_status(self) -> SchedulerStatus:
        """Consistent snapshot of queue depth and in-flight count."""
        with self._lock:
            queue_length = len(self._queue)
            processing = len(self._in_flight)
        return SchedulerStatus(
            queue_length=queue_length,
            processing=processing,
            is_processing=queue_length > 0 or processing > 0,
        )

    def clear(self) -> None:
        """
        Forget all pending and in-flight tasks.

        In-flight workers are not cancelled; their outcomes are ignored when
        they report back.
        """
        with self._lock:
            dropped = self._queue.clear()
            forgotten = len(self._in_flight)
            self._in_flight.clear()

        logger.info(
            f'Embedding queue cleared: dropped {dropped} pending, '
            f'forgot {forgotten} in-flight'
        )

    def failed_tasks(self) -> list[FailedTask]:
        """Dead-letter records of tasks that exhausted their retries, oldest first."""
        with self._lock:
            return list(self._dead_letter)

    def queue_depth_by_priority(self) -> dict[str, int]:
        with self._lock:
            return self._queue.depth_by_priority()

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self) -> None:
        """Start the scheduler loop on the running event loop."""
        if self.is_running:
            return
        self._stop_requested = False
        self._start_on(asyncio.get_running_loop())

    async def stop(self, drain_timeout: Optional[float] = DEFAULT_DRAIN_TIMEOUT_S) -> None:
        """
        Stop dispatching and wait for in-flight workers.

        Workers still running after drain_timeout seconds are cancelled and
        their tasks go back to the queue with their attempt count unchanged.
        """
        self._stop_requested = True
        self._notify()

        loop_task = self._loop_task
        if loop_task is not None:
            await asyncio.gather(loop_task, return_exceptions=True)
            self._loop_task = None

        workers = set(self._workers)
        if workers:
            _done, pending = await asyncio.wait(workers, timeout=drain_timeout)
            if pending:
                logger.warning(
                    f'{len(pending)} worker(s) still running after {drain_timeout}s, cancelling'
                )
                for worker in pending:
                    worker.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info('Scheduler stopped')

    async def wait_idle(
        self, timeout: Optional[float] = None, poll_interval: float = 0.02
    ) -> bool:
        """Wait until nothing is queued or processing. Returns False on timeout."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self.get_status().is_processing:
            if deadline is not None and loop.time() >= deadline:
                return False
            await asyncio.sleep(poll_interval)
        return True

    async def __aenter__(self) -> EmbeddingScheduler:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def _admit_kind(self, entity_kind: EntityKind | str) -> EntityKind:
        try:
            kind = EntityKind(entity_kind)
        except ValueError:
            kind = None
        if kind is None or kind not in self._accepted_kinds:
            raise AdmissionError(
                message=f'unknown entity kind: {entity_kind!r}',
                code=ErrorCode.ADMISSION_UNKNOWN_ENTITY_KIND,
                notes=[
                    f'accepted kinds: {sorted(k.value for k in self._accepted_kinds)}'
                ],
                help_text='enqueue one of the accepted entity kinds',
            )
        return kind

    @staticmethod
    def _admit_entity_id(entity_id: Any) -> None:
        if isinstance(entity_id, bool) or not isinstance(entity_id, int) or entity_id <= 0:
            raise AdmissionError(
                message=f'invalid entity id: {entity_id!r}',
                code=ErrorCode.ADMISSION_INVALID_ENTITY_ID,
                notes=[f'got {type(entity_id).__name__}'],
                help_text='entity ids are positive integer primary keys',
            )

    @staticmethod
    def _admit_payload(payload: Optional[Mapping[str, Any]]) -> dict[str, Any]:
        if payload is None:
            return {}
        if not isinstance(payload, Mapping):
            raise AdmissionError(
                message='payload must be a mapping',
                code=ErrorCode.ADMISSION_INVALID_PAYLOAD,
                notes=[f'got {type(payload).__name__}'],
                help_text="pass the row snapshot as a dict, or {'id': entity_id}",
            )
        # Snapshot so later mutation by the caller does not leak into the task
        return dict(payload)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _start_on(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._wake = asyncio.Event()
        self._loop_task = loop.create_task(self._run(), name='embedq-scheduler')
        logger.info('Starting embedding queue processing...')

    def _ensure_started(self) -> None:
        """Start the loop on first enqueue when called from inside an event loop."""
        if self.is_running or self._stop_requested:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Sync caller without a loop; tasks wait until start() is awaited
            return
        self._start_on(loop)

    def _notify(self) -> None:
        """Wake the scheduler loop; safe from any thread."""
        loop, wake = self._loop, self._wake
        if loop is None or wake is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            wake.set()
            return
        try:
            loop.call_soon_threadsafe(wake.set)
        except RuntimeError:
            # Loop closed between the check and the call
            pass

    async def _run(self) -> None:
        assert self._wake is not None
        wake = self._wake
        while not self._stop_requested:
            wake.clear()
            try:
                timeout = self._dispatch_pass()
            except Exception as e:
                logger.error(f'Error in scheduler loop: {e}', exc_info=True)
                timeout = _LOOP_ERROR_PAUSE_S

            if self._stop_requested:
                break
            if timeout == 0:
                # Let dispatched workers start before the next pass
                await asyncio.sleep(0)
                continue
            try:
                await asyncio.wait_for(wake.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                continue  # Backoff elapsed
        logger.debug('Scheduler loop exited')

    def _dispatch_pass(self) -> Optional[float]:
        """
        Dispatch one batch of eligible tasks.

        Returns how long the loop may sleep before the next pass: 0 to run
        again right away, a number of seconds until the earliest backoff
        expires, or None to wait for the next enqueue/completion signal.
        """
        dispatched: list[tuple[int, EmbeddingTask]] = []
        with self._lock:
            free = self.config.max_concurrent - len(self._in_flight)
            if free <= 0:
                return None

            now = self._clock()
            batch = self._queue.pop_eligible(now, min(free, self.config.batch_size))
            for task in batch:
                task.status = TaskStatus.PROCESSING
                serial = next(self._serials)
                self._in_flight[serial] = task
                dispatched.append((serial, task))

            if not batch:
                earliest = self._queue.earliest_eligible_at()
                return None if earliest is None else max(0.0, earliest - now)

        for serial, task in dispatched:
            with self._lock:
                if serial not in self._in_flight:
                    continue  # cleared after the batch was taken
            worker = asyncio.create_task(
                self._execute(serial, task), name=f'embedq-worker-{task.task_id}'
            )
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)
        return 0

    # ------------------------------------------------------------------
    # Worker execution and outcome handling
    # ------------------------------------------------------------------

    async def _execute(self, serial: int, task: EmbeddingTask) -> None:
        work = task.work
        with self._lock:
            if serial not in self._in_flight:
                # Cleared between dispatch and start
                logger.debug(f'Skipping cleared task {work.task_id}')
                return
        logger.info(
            f'Processing embedding task: {work.task_id} '
            f'(attempt {task.attempt + 1}/{self.config.max_attempts})'
        )
        try:
            vector = await self._runner.run(work)
            outcome = WorkerOutcome(task_id=work.task_id, dimensions=len(vector))
        except asyncio.CancelledError:
            self._requeue_cancelled(serial)
            raise
        except Exception as exc:
            outcome = WorkerOutcome(task_id=work.task_id, error=exc)
        self._complete(serial, outcome)

    def _complete(self, serial: int, outcome: WorkerOutcome) -> None:
        """Apply a worker outcome under the lock, then wake the loop."""
        retry_in: Optional[float] = None
        with self._lock:
            task = self._in_flight.pop(serial, None)
            if task is not None:
                if outcome.ok:
                    task.status = TaskStatus.SUCCEEDED
                else:
                    task.attempt += 1
                    task.last_error = f'{type(outcome.error).__name__}: {outcome.error}'
                    if task.attempt > self.config.max_retries:
                        task.status = TaskStatus.FAILED
                        self._dead_letter.append(_dead_letter_record(task))
                    else:
                        retry_in = self.config.backoff_seconds(task.attempt)
                        task.next_eligible_at = self._clock() + retry_in
                        task.status = TaskStatus.QUEUED
                        self._queue.push(task)

        if task is None:
            logger.debug(f'Ignoring outcome of cleared task {outcome.task_id}')
        elif task.status is TaskStatus.SUCCEEDED:
            logger.info(
                f'Successfully processed embedding task: {outcome.task_id} '
                f'({outcome.dimensions} dimensions)'
            )
        elif task.status is TaskStatus.QUEUED:
            logger.warning(
                f'Embedding task {outcome.task_id} failed '
                f'(attempt {task.attempt}/{self.config.max_attempts}): {task.last_error}; '
                f'retrying in {retry_in:.2f}s'
            )
        else:
            logger.error(
                f'Permanently failed embedding task {outcome.task_id} '
                f'after {task.attempt} attempts',
                exc_info=outcome.error,
            )

        self._notify()

    def _requeue_cancelled(self, serial: int) -> None:
        with self._lock:
            task = self._in_flight.pop(serial, None)
            if task is None:
                return
            task.status = TaskStatus.QUEUED
            self._queue.push_front(task)
        logger.warning(f'Embedding task {task.task_id} cancelled, returned to queue')


def _coerce_priority(priority: TaskPriority | str) -> TaskPriority:
    try:
        return TaskPriority(priority)
    except ValueError:
        logger.warning(f'Unknown priority {priority!r}, using normal')
        return TaskPriority.NORMAL


def _dead_letter_record(task: EmbeddingTask) -> FailedTask:
    return FailedTask(
        task_id=task.task_id,
        entity_kind=task.work.entity_kind,
        entity_id=task.work.entity_id,
        priority=task.priority,
        attempts=task.attempt,
        error=task.last_error or '',
        failed_at=datetime.now(timezone.utc),
    )
