# embedq/core/regenerate.py
from __future__ import annotations

from typing import Iterable

from embedq.core.errors import AdmissionError, ErrorCode
from embedq.core.logging import get_logger
from embedq.core.models.task import RegenerationReport
from embedq.core.protocols import EntityStore
from embedq.core.scheduler.service import EmbeddingScheduler
from embedq.core.types.status import EntityKind, TaskPriority

logger = get_logger('regenerate')


def _resolve_kinds(kinds: Iterable[EntityKind | str]) -> list[EntityKind]:
    """Resolve every requested kind up front so a bad one rejects the whole run."""
    resolved: list[EntityKind] = []
    for raw_kind in kinds:
        try:
            resolved.append(EntityKind(raw_kind))
        except ValueError:
            raise AdmissionError(
                message=f'unknown entity kind: {raw_kind!r}',
                code=ErrorCode.ADMISSION_UNKNOWN_ENTITY_KIND,
            ).with_note(
                f'accepted kinds: {sorted(k.value for k in EntityKind)}'
            ).with_help('nothing was enqueued; fix the kind list and retry') from None
    return resolved


async def regenerate_embeddings(
    scheduler: EmbeddingScheduler,
    store: EntityStore,
    kinds: Iterable[EntityKind | str] = (EntityKind.RECOMMENDATION,),
    priority: TaskPriority | str = TaskPriority.LOW,
    only_missing: bool = False,
) -> RegenerationReport:
    """
    Enqueue an embedding task for every stored entity of the given kinds.

    Each task carries only ``{'id': id}``, so the worker re-reads the row.
    The returned counts are admission counts: ``admitted`` tasks were
    accepted for scheduling, which says nothing about whether their
    embeddings were computed. An unknown kind raises AdmissionError before
    anything is listed or enqueued. Use ``scheduler.wait_idle()`` and
    ``scheduler.failed_tasks()`` to observe completion.
    """
    resolved_kinds = _resolve_kinds(kinds)
    report = RegenerationReport()

    for kind in resolved_kinds:
        entity_ids = await store.list_entity_ids(kind, only_missing=only_missing)
        logger.info(
            f'Regenerating {len(entity_ids)} {kind.value} embedding(s)'
            + (' (missing only)' if only_missing else '')
        )

        admitted = 0
        for entity_id in entity_ids:
            try:
                task_id = scheduler.enqueue(kind, entity_id, {'id': entity_id}, priority)
            except AdmissionError as e:
                report.rejected += 1
                logger.warning(f'Skipping {kind.value} {entity_id}: {e}')
                continue
            admitted += 1
            report.task_ids.append(task_id)

        report.admitted += admitted
        report.by_kind[kind.value] = admitted

    logger.info(
        f'Embedding regeneration queued: {report.admitted} admitted, '
        f'{report.rejected} rejected'
    )
    return report
