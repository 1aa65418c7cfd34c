# embedq/core/stores/postgres.py
from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import TextClause
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from embedq.core.errors import EntityNotFoundError
from embedq.core.logging import get_logger
from embedq.core.models.database import PostgresConfig
from embedq.core.stores.sql import (
    FETCH_ENTITY_SQL,
    FETCH_PLACE_SQL,
    FETCH_SERVICE_SQL,
    FETCH_USER_SQL,
    LIST_ENTITY_IDS_SQL,
    LIST_MISSING_ENTITY_IDS_SQL,
    PERSIST_EMBEDDING_SQL,
    PING_SQL,
)
from embedq.core.types.status import EntityKind
from embedq.core.utils.db import retry_connect
from embedq.core.utils.url import mask_database_url


def format_vector(vector: Sequence[float]) -> str:
    """pgvector text form: '[0.1,0.2,...]'."""
    return '[' + ','.join(repr(float(v)) for v in vector) + ']'


class PostgresEntityStore:
    """
    Entity store backed by PostgreSQL with the pgvector extension.

    Reads rows of the embedded tables, resolves the place/service/user rows
    they reference, and overwrites their ``embedding`` column.
    """

    def __init__(self, config: PostgresConfig):
        self.config = config
        self.logger = get_logger('store')
        self.async_engine = create_async_engine(
            config.database_url, **config.engine_kwargs()
        )
        self.session_factory = async_sessionmaker(
            self.async_engine, expire_on_commit=False
        )
        self.logger.info(
            f'PostgresEntityStore initialized ({mask_database_url(config.database_url)})'
        )

    async def connect(self) -> None:
        """Probe the database, retrying transient connection errors."""
        await retry_connect(
            self.ping,
            max_attempts=self.config.connect_retries,
            delay_seconds=self.config.connect_retry_delay_s,
        )
        self.logger.info('Database connection established')

    async def ping(self) -> None:
        async with self.async_engine.connect() as conn:
            await conn.execute(PING_SQL)

    async def fetch_entity(self, kind: EntityKind, entity_id: int) -> dict[str, Any]:
        async with self.session_factory() as session:
            result = await session.execute(FETCH_ENTITY_SQL[kind], {'id': entity_id})
            row = result.mappings().first()
        if row is None:
            raise EntityNotFoundError(kind.value, entity_id)
        return dict(row)

    async def fetch_related(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """
        Resolve the rows a record points at into flat enrichment fields.

        Lookups for place_id, service_id and user_id run concurrently; a
        missing reference or row contributes nothing.
        """
        place, service, user = await asyncio.gather(
            self._fetch_optional(FETCH_PLACE_SQL, record.get('place_id')),
            self._fetch_optional(FETCH_SERVICE_SQL, record.get('service_id')),
            self._fetch_optional(FETCH_USER_SQL, record.get('user_id')),
        )

        related: dict[str, Any] = {}
        if place:
            related['place_name'] = place.get('name')
            related['place_address'] = place.get('address')
        if service:
            related['service_name'] = service.get('name')
            related['service_type'] = service.get('service_type')
            related['business_name'] = service.get('business_name')
            related['address'] = service.get('address')
        if user:
            related['user_name'] = user.get('display_name')
        return {key: value for key, value in related.items() if value is not None}

    async def _fetch_optional(
        self, statement: TextClause, ref: Any
    ) -> Optional[dict[str, Any]]:
        if ref is None:
            return None
        async with self.session_factory() as session:
            result = await session.execute(statement, {'id': ref})
            row = result.mappings().first()
        return dict(row) if row is not None else None

    async def persist_embedding(
        self, kind: EntityKind, entity_id: int, vector: Sequence[float]
    ) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                PERSIST_EMBEDDING_SQL[kind],
                {'embedding': format_vector(vector), 'id': entity_id},
            )
            await session.commit()

        if result.rowcount == 0:  # type: ignore[attr-defined]
            # Row deleted after the task was enqueued; nothing to retry
            self.logger.warning(f'No {kind.value} {entity_id} to update with embedding')
        else:
            self.logger.debug(f'Updated {kind.value} {entity_id} with embedding')

    async def list_entity_ids(
        self, kind: EntityKind, *, only_missing: bool = False
    ) -> list[int]:
        statement = (LIST_MISSING_ENTITY_IDS_SQL if only_missing else LIST_ENTITY_IDS_SQL)[kind]
        async with self.session_factory() as session:
            result = await session.execute(statement)
            return [row[0] for row in result.fetchall()]

    async def close(self) -> None:
        await self.async_engine.dispose()
