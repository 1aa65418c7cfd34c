# embedq/core/scheduler/__init__.py
"""
In-process scheduler for embedding tasks.

Main components:
- EmbeddingScheduler: admits tasks and drives them through bounded concurrent workers
- PriorityTaskQueue: priority-bucketed pending queue with backoff awareness

Example usage:
    from embedq.core.scheduler import EmbeddingScheduler

    async with EmbeddingScheduler(SchedulerConfig(), pipeline) as scheduler:
        scheduler.enqueue('recommendation', 42, {'id': 42}, priority='high')
        await scheduler.wait_idle()
"""

from embedq.core.scheduler.service import EmbeddingScheduler
from embedq.core.scheduler.queue import PriorityTaskQueue

__all__ = [
    'EmbeddingScheduler',
    'PriorityTaskQueue',
]
