# embedq/core/app.py
from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

from embedq.core.errors import ConfigurationError, EmbedqError, ErrorCode
from embedq.core.logging import get_logger
from embedq.core.models.app import AppConfig
from embedq.core.models.task import RegenerationReport, SchedulerStatus
from embedq.core.protocols import EmbeddingProvider, EntityStore
from embedq.core.providers.openai import OpenAIEmbeddingProvider
from embedq.core.regenerate import regenerate_embeddings
from embedq.core.scheduler.service import EmbeddingScheduler
from embedq.core.stores.postgres import PostgresEntityStore
from embedq.core.types.status import EntityKind, TaskPriority
from embedq.core.worker.pipeline import EmbeddingPipeline


class EmbedQ:
    """
    Configuration-driven embedding service.

    Wires an AppConfig into the Postgres entity store, the OpenAI-compatible
    provider, the embedding pipeline and the scheduler. Collaborators may be
    injected (tests, alternative backends); otherwise they are built from
    the config.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        store: Optional[EntityStore] = None,
        provider: Optional[EmbeddingProvider] = None,
    ):
        self.config = config
        self.logger = get_logger('app')
        self.store: EntityStore = store or PostgresEntityStore(config.database)
        self.provider: EmbeddingProvider = provider or OpenAIEmbeddingProvider(
            config.provider
        )
        self.pipeline = EmbeddingPipeline(self.store, self.provider)
        self.scheduler = EmbeddingScheduler(config.scheduler, self.pipeline)
        self.logger.info('embedq initialized')

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> EmbedQ:
        return cls(AppConfig.from_env(environ))

    # ------------- Producer API -------------

    def enqueue(
        self,
        entity_kind: EntityKind | str,
        entity_id: int,
        payload: Optional[Mapping[str, Any]] = None,
        priority: TaskPriority | str = TaskPriority.NORMAL,
    ) -> str:
        return self.scheduler.enqueue(entity_kind, entity_id, payload, priority)

    def get_status(self) -> SchedulerStatus:
        return self.scheduler.get_status()

    def clear(self) -> None:
        self.scheduler.clear()

    async def regenerate(
        self,
        kinds: Iterable[EntityKind | str] = (EntityKind.RECOMMENDATION,),
        priority: TaskPriority | str = TaskPriority.LOW,
        only_missing: bool = False,
    ) -> RegenerationReport:
        return await regenerate_embeddings(
            self.scheduler, self.store, kinds, priority=priority, only_missing=only_missing
        )

    # ------------- Lifecycle -------------

    async def start(self) -> None:
        """Verify the database is reachable, then start the scheduler loop."""
        connect = getattr(self.store, 'connect', None)
        if connect is not None:
            await connect()
        await self.scheduler.start()

    async def close(self, drain_timeout: Optional[float] = None) -> None:
        if drain_timeout is None:
            await self.scheduler.stop()
        else:
            await self.scheduler.stop(drain_timeout)
        for resource in (self.provider, self.store):
            closer = getattr(resource, 'aclose', None) or getattr(resource, 'close', None)
            if closer is not None:
                await closer()
        self.logger.info('embedq closed')

    async def __aenter__(self) -> EmbedQ:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------- Validation -------------

    async def check(self, *, live: bool = False) -> list[EmbedqError]:
        """Return every problem found; an empty list means ready to run.

        Config is validated at construction. With ``live``, the database is
        probed with SELECT 1 and the provider API key presence is checked.
        """
        errors: list[EmbedqError] = []
        if not self.config.provider.api_key:
            errors.append(
                ConfigurationError(
                    message='OPENAI_API_KEY is not set',
                    code=ErrorCode.CONFIG_MISSING_ENV,
                    notes=['every embedding task would fail until it is set'],
                    help_text="export OPENAI_API_KEY='sk-...'",
                )
            )
        if live:
            ping = getattr(self.store, 'ping', None)
            if ping is not None:
                try:
                    await ping()
                except Exception as exc:
                    errors.append(
                        ConfigurationError(
                            message='database connectivity check failed',
                            code=ErrorCode.CONFIG_INVALID_DATABASE_URL,
                            notes=[str(exc)],
                            help_text='check DATABASE_URL',
                        )
                    )
        return errors
