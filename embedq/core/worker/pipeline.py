# embedq/core/worker/pipeline.py
from __future__ import annotations

import time
from typing import Any, Mapping

from embedq.core.errors import EmbeddingProviderError
from embedq.core.logging import get_logger
from embedq.core.models.task import EmbeddingWork
from embedq.core.protocols import EmbeddingProvider, EntityStore
from embedq.core.worker.text import compose_text

logger = get_logger('worker')

# A snapshot with this many keys or fewer (and no user_id) is only a reference
PARTIAL_PAYLOAD_MAX_KEYS = 2


def is_partial_payload(payload: Mapping[str, Any]) -> bool:
    """True when the enqueued snapshot is too thin to build text from."""
    return not payload.get('user_id') or len(payload) <= PARTIAL_PAYLOAD_MAX_KEYS


class EmbeddingPipeline:
    """
    Executes one embedding task: resolve -> enrich -> compose -> embed -> persist.

    Stateless between tasks, so one instance serves every concurrent worker.
    Any exception propagates to the scheduler, which owns retry decisions.
    """

    def __init__(self, store: EntityStore, provider: EmbeddingProvider):
        self.store = store
        self.provider = provider

    async def run(self, work: EmbeddingWork) -> list[float]:
        started = time.perf_counter()
        kind, entity_id = work.entity_kind, work.entity_id

        record: dict[str, Any] = dict(work.payload)
        if is_partial_payload(record):
            logger.debug(f'Fetching full {kind.value} {entity_id} for task {work.task_id}')
            record = await self.store.fetch_entity(kind, entity_id)

        related = await self.store.fetch_related(record)
        enriched = {**record, **related}

        text = compose_text(kind, enriched)

        try:
            vector = await self.provider.embed(text)
        except EmbeddingProviderError as e:
            if not e.retryable:
                logger.warning(
                    f'Provider error for task {work.task_id} is not retryable: {e}'
                )
            raise

        await self.store.persist_embedding(kind, entity_id, vector)

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f'Embedded {kind.value} {entity_id}: {len(text)} chars -> '
            f'{len(vector)} dims in {elapsed_ms:.0f}ms'
        )
        return vector
