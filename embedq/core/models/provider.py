# embedq/core/models/provider.py
from __future__ import annotations

import os
from typing import Annotated, Optional, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from embedq.core.defaults import (
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_PROVIDER_BASE_URL,
    DEFAULT_PROVIDER_TIMEOUT_S,
)
from embedq.core.errors import (
    ConfigurationError,
    ErrorCode,
    ValidationReport,
    raise_collected,
)


class ProviderConfig(BaseModel):
    """
    Configuration for an OpenAI-compatible embeddings endpoint.

    The provider call is the only place a per-call timeout is enforced;
    the scheduler itself has no per-task deadline.
    """

    model_config = ConfigDict(frozen=True, extra='forbid')

    base_url: str = Field(
        default=DEFAULT_PROVIDER_BASE_URL,
        description='Base URL; requests go to {base_url}/embeddings',
    )
    model: str = Field(default=DEFAULT_EMBEDDING_MODEL, description='Embedding model name')
    api_key: Optional[str] = Field(
        default_factory=lambda: os.environ.get('OPENAI_API_KEY'),
        description='Bearer token; defaults to $OPENAI_API_KEY',
        repr=False,
    )
    timeout_seconds: Annotated[float, Field(gt=0, le=600)] = Field(
        default=DEFAULT_PROVIDER_TIMEOUT_S,
        description='Per-request timeout in seconds',
    )
    dimensions: Optional[Annotated[int, Field(ge=1, le=16_384)]] = Field(
        default=None,
        description='Expected vector length; responses of another length are rejected',
    )

    @model_validator(mode='after')
    def validate_endpoint(self) -> Self:
        report = ValidationReport('provider')
        if not self.base_url.startswith(('http://', 'https://')):
            report.add(
                ConfigurationError(
                    message='provider base_url must be an http(s) URL',
                    code=ErrorCode.CONFIG_INVALID_PROVIDER,
                    notes=[f'base_url={self.base_url!r}'],
                    help_text="use e.g. 'https://api.openai.com/v1'",
                )
            )
        if not self.model.strip():
            report.add(
                ConfigurationError(
                    message='provider model must not be empty',
                    code=ErrorCode.CONFIG_INVALID_PROVIDER,
                    help_text=f"use e.g. '{DEFAULT_EMBEDDING_MODEL}'",
                )
            )

        raise_collected(report)
        return self
