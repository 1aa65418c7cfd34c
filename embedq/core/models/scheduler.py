# embedq/core/models/scheduler.py
from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from embedq.core.defaults import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_DEAD_LETTER_SIZE,
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_MS,
)


class SchedulerConfig(BaseModel):
    """
    Configuration for the embedding task scheduler.

    Supplied at construction and immutable for the scheduler's lifetime.

    Fields:
        max_concurrent: upper bound on simultaneously processing tasks
        retry_delay_ms: base backoff unit; retry N waits retry_delay_ms * N
        max_retries: retries after the initial attempt (0 = no retries)
        batch_size: max tasks dispatched in a single scheduling pass
        dead_letter_size: how many terminal failures are remembered
    """

    model_config = ConfigDict(frozen=True, extra='forbid')

    max_concurrent: Annotated[int, Field(ge=1, le=1_000)] = Field(
        default=DEFAULT_MAX_CONCURRENT,
        description='Maximum simultaneously processing tasks (1-1000)',
    )
    retry_delay_ms: Annotated[int, Field(ge=0, le=3_600_000)] = Field(
        default=DEFAULT_RETRY_DELAY_MS,
        description='Base backoff unit in milliseconds (0-1h)',
    )
    max_retries: Annotated[int, Field(ge=0, le=100)] = Field(
        default=DEFAULT_MAX_RETRIES,
        description='Retry attempts after the initial attempt (0-100)',
    )
    batch_size: Annotated[int, Field(ge=1, le=1_000)] = Field(
        default=DEFAULT_BATCH_SIZE,
        description='Maximum tasks dispatched per scheduling pass (1-1000)',
    )
    dead_letter_size: Annotated[int, Field(ge=0, le=100_000)] = Field(
        default=DEFAULT_DEAD_LETTER_SIZE,
        description='Terminal failures kept for inspection; 0 disables the record',
    )

    def backoff_seconds(self, attempt: int) -> float:
        """Linear backoff: retry_delay * attempt."""
        return self.retry_delay_ms * max(0, attempt) / 1000.0

    @property
    def max_attempts(self) -> int:
        """Initial attempt plus configured retries."""
        return self.max_retries + 1
