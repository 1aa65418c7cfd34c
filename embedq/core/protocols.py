# embedq/core/protocols.py
"""Interfaces of the collaborators the scheduler drives.

Reference implementations live in embedq.core.stores.postgres and
embedq.core.providers.openai; tests substitute fakes.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from embedq.core.models.task import EmbeddingWork
from embedq.core.types.status import EntityKind


class EntityStore(Protocol):
    """Keyed access to the rows that own an embedding column."""

    async def fetch_entity(self, kind: EntityKind, entity_id: int) -> dict[str, Any]:
        """Return the full row; raise EntityNotFoundError when it does not exist."""
        ...

    async def fetch_related(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Return place/service/author fields referenced by ``record``."""
        ...

    async def persist_embedding(
        self, kind: EntityKind, entity_id: int, vector: Sequence[float]
    ) -> None:
        """Overwrite the embedding of one row. Idempotent."""
        ...

    async def list_entity_ids(
        self, kind: EntityKind, *, only_missing: bool = False
    ) -> list[int]:
        ...


class EmbeddingProvider(Protocol):
    """Maps text to a fixed-length vector. May fail transiently."""

    async def embed(self, text: str) -> list[float]: ...


class TaskRunner(Protocol):
    """Executes one unit of work; raises on failure, returns the persisted vector."""

    async def run(self, work: EmbeddingWork) -> Sequence[float]: ...
