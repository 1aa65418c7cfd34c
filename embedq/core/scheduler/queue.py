# embedq/core/scheduler/queue.py
from __future__ import annotations

from collections import deque

from embedq.core.models.task import EmbeddingTask
from embedq.core.types.status import TaskPriority


class PriorityTaskQueue:
    """
    Pending tasks bucketed by priority, FIFO within each bucket.

    Not thread-safe on its own; the scheduler guards every call with its lock.
    """

    def __init__(self) -> None:
        self._buckets: dict[TaskPriority, deque[EmbeddingTask]] = {
            priority: deque() for priority in TaskPriority
        }

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._buckets.values())

    def push(self, task: EmbeddingTask) -> None:
        """Append task to the tail of its priority bucket."""
        self._buckets[task.priority].append(task)

    def push_front(self, task: EmbeddingTask) -> None:
        """Put task back at the head of its priority bucket."""
        self._buckets[task.priority].appendleft(task)

    def pop_eligible(self, now: float, limit: int) -> list[EmbeddingTask]:
        """
        Remove and return up to ``limit`` tasks with next_eligible_at <= now.

        Buckets are scanned high -> normal -> low. A backed-off task stays
        where it is and the scan moves on to the next eligible task of
        equal or lower priority.
        """
        taken: list[EmbeddingTask] = []
        if limit <= 0:
            return taken

        for priority in TaskPriority:
            bucket = self._buckets[priority]
            if not bucket:
                continue
            kept: deque[EmbeddingTask] = deque()
            while bucket:
                task = bucket.popleft()
                if len(taken) < limit and task.next_eligible_at <= now:
                    taken.append(task)
                else:
                    kept.append(task)
            self._buckets[priority] = kept
            if len(taken) >= limit:
                break

        return taken

    def earliest_eligible_at(self) -> float | None:
        """Smallest next_eligible_at among pending tasks, or None when empty."""
        earliest: float | None = None
        for bucket in self._buckets.values():
            for task in bucket:
                if earliest is None or task.next_eligible_at < earliest:
                    earliest = task.next_eligible_at
        return earliest

    def clear(self) -> int:
        """Drop every pending task; returns how many were dropped."""
        dropped = len(self)
        for bucket in self._buckets.values():
            bucket.clear()
        return dropped

    def depth_by_priority(self) -> dict[str, int]:
        return {priority.value: len(bucket) for priority, bucket in self._buckets.items()}
