"""embedq - background embedding generation with bounded concurrency and retries"""

# Install Rust-style error handler on import
from .core.errors import install_error_handler as _install_error_handler

_install_error_handler()

from .core.app import EmbedQ
from .core.models.app import AppConfig
from .core.models.database import PostgresConfig
from .core.models.provider import ProviderConfig
from .core.models.scheduler import SchedulerConfig
from .core.models.task import (
    EmbeddingTask,
    EmbeddingWork,
    FailedTask,
    RegenerationReport,
    SchedulerStatus,
    WorkerOutcome,
)
from .core.types.status import EntityKind, TaskPriority, TaskStatus
from .core.scheduler import EmbeddingScheduler
from .core.worker.pipeline import EmbeddingPipeline
from .core.worker.text import compose_annotation_text, compose_recommendation_text
from .core.providers.openai import OpenAIEmbeddingProvider
from .core.stores.postgres import PostgresEntityStore
from .core.protocols import EmbeddingProvider, EntityStore, TaskRunner
from .core.regenerate import regenerate_embeddings
from .core.errors import (
    EmbedqError,
    ErrorCode,
    ConfigurationError,
    AdmissionError,
    EmbeddingProviderError,
    EntityNotFoundError,
    MultipleValidationErrors,
)

__all__ = [
    # App
    'EmbedQ',
    'AppConfig',
    'PostgresConfig',
    'ProviderConfig',
    'SchedulerConfig',
    # Scheduling
    'EmbeddingScheduler',
    'EmbeddingTask',
    'EmbeddingWork',
    'FailedTask',
    'SchedulerStatus',
    'WorkerOutcome',
    'EntityKind',
    'TaskPriority',
    'TaskStatus',
    # Execution
    'EmbeddingPipeline',
    'compose_annotation_text',
    'compose_recommendation_text',
    'OpenAIEmbeddingProvider',
    'PostgresEntityStore',
    'EmbeddingProvider',
    'EntityStore',
    'TaskRunner',
    # Bulk
    'regenerate_embeddings',
    'RegenerationReport',
    # Errors
    'EmbedqError',
    'ErrorCode',
    'ConfigurationError',
    'AdmissionError',
    'EmbeddingProviderError',
    'EntityNotFoundError',
    'MultipleValidationErrors',
]
