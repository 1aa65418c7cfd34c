"""Shared default constants for the embedq library."""

# Scheduler defaults.
DEFAULT_MAX_CONCURRENT: int = 3
DEFAULT_RETRY_DELAY_MS: int = 5_000
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_BATCH_SIZE: int = 5

# Number of terminally failed tasks kept for inspection.
DEFAULT_DEAD_LETTER_SIZE: int = 100

# How long stop() waits for in-flight workers before cancelling them.
DEFAULT_DRAIN_TIMEOUT_S: float = 10.0

# OpenAI-compatible embeddings endpoint.
DEFAULT_PROVIDER_BASE_URL: str = 'https://api.openai.com/v1'
DEFAULT_EMBEDDING_MODEL: str = 'text-embedding-ada-002'
DEFAULT_PROVIDER_TIMEOUT_S: float = 30.0
