# core/types/status.py
"""
Core types and enums used throughout the scheduler.
This module should not import from other embedq modules.
"""

from enum import Enum


class TaskStatus(Enum):
    """Embedding task status"""

    QUEUED = 'queued'  # Waiting in the priority queue (possibly backed off).

    PROCESSING = 'processing'  # Dispatched to a worker, outcome not yet reported.

    SUCCEEDED = 'succeeded'  # Vector computed and persisted.

    FAILED = 'failed'  # Retries exhausted. Never leaves this state.


class TaskPriority(str, Enum):
    """Dispatch priority. Declaration order is dispatch order."""

    HIGH = 'high'
    NORMAL = 'normal'
    LOW = 'low'


class EntityKind(str, Enum):
    """Kind of user content an embedding is computed for."""

    RECOMMENDATION = 'recommendation'
    ANNOTATION = 'annotation'
