# embedq/core/models/task.py
from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Mapping

from embedq.core.types.status import EntityKind, TaskPriority, TaskStatus


def make_task_id(
    entity_kind: EntityKind, entity_id: int, enqueued_at: datetime.datetime
) -> str:
    """Derive the task id from (kind, entity id, enqueue time in epoch ms).

    The id correlates log lines; duplicate enqueues within the same
    millisecond produce the same id and are not rejected.
    """
    epoch_ms = int(enqueued_at.timestamp() * 1000)
    return f'{entity_kind.value}-{entity_id}-{epoch_ms}'


@dataclass(frozen=True, slots=True)
class EmbeddingWork:
    """The immutable unit of work handed to a worker.

    payload is the snapshot taken at enqueue time; it may be partial
    (e.g. only {'id': 42}), in which case the worker resolves the rest.
    """

    task_id: str
    entity_kind: EntityKind
    entity_id: int
    payload: Mapping[str, Any]
    priority: TaskPriority
    enqueued_at: datetime.datetime


@dataclass(slots=True)
class EmbeddingTask:
    """
    An EmbeddingWork plus the scheduling metadata the scheduler loop mutates.

    - attempt: failed execution attempts so far
    - status: QUEUED / PROCESSING / SUCCEEDED / FAILED
    - next_eligible_at: monotonic clock reading before which the task is not dispatched
    - last_error: repr of the most recent failure, if any
    """

    work: EmbeddingWork
    next_eligible_at: float
    attempt: int = 0
    status: TaskStatus = TaskStatus.QUEUED
    last_error: str | None = None

    @property
    def task_id(self) -> str:
        return self.work.task_id

    @property
    def priority(self) -> TaskPriority:
        return self.work.priority


@dataclass(frozen=True, slots=True)
class SchedulerStatus:
    """Point-in-time snapshot returned by EmbeddingScheduler.get_status().

    queue_length counts pending tasks only; processing counts dispatched
    tasks whose outcome has not been reported yet.
    """

    queue_length: int
    processing: int
    is_processing: bool

    def to_dict(self) -> dict[str, Any]:
        """camelCase shape consumed by the HTTP status endpoint."""
        return {
            'queueLength': self.queue_length,
            'processing': self.processing,
            'isProcessing': self.is_processing,
        }


@dataclass(frozen=True, slots=True)
class FailedTask:
    """Dead-letter record of a task that exhausted its retries."""

    task_id: str
    entity_kind: EntityKind
    entity_id: int
    priority: TaskPriority
    attempts: int
    error: str
    failed_at: datetime.datetime


@dataclass(frozen=True, slots=True)
class WorkerOutcome:
    """What a worker reports back to the scheduler loop.

    Workers never mutate scheduler state; the loop applies the outcome.
    """

    task_id: str
    error: BaseException | None = None
    dimensions: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RegenerationReport:
    """Admission counts of a bulk regeneration run.

    admitted counts tasks accepted for scheduling, not embeddings computed.
    """

    admitted: int = 0
    rejected: int = 0
    task_ids: list[str] = field(default_factory=lambda: [])
    by_kind: dict[str, int] = field(default_factory=lambda: {})
