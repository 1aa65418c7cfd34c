# embedq/core/providers/openai.py
from __future__ import annotations

from typing import Any, Optional

import httpx

from embedq.core.errors import EmbeddingProviderError
from embedq.core.logging import get_logger
from embedq.core.models.provider import ProviderConfig

logger = get_logger('provider')

# Client errors that another attempt may fix
_RETRYABLE_CLIENT_STATUSES = frozenset({408, 409, 429})


class OpenAIEmbeddingProvider:
    """
    Embedding provider for the OpenAI /embeddings API (and compatible servers).

    Every failure surfaces as EmbeddingProviderError; the scheduler decides
    whether to try again.
    """

    def __init__(
        self,
        config: ProviderConfig,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_seconds, connect=10.0),
        )

    async def embed(self, text: str) -> list[float]:
        if not self.config.api_key:
            raise EmbeddingProviderError(
                'OPENAI_API_KEY environment variable is not set', retryable=False
            )

        body: dict[str, Any] = {'model': self.config.model, 'input': text}
        if self.config.dimensions is not None and self.config.model.startswith(
            'text-embedding-3'
        ):
            body['dimensions'] = self.config.dimensions

        try:
            response = await self._client.post(
                f'{self.config.base_url.rstrip("/")}/embeddings',
                json=body,
                headers={'Authorization': f'Bearer {self.config.api_key}'},
            )
        except httpx.TimeoutException as e:
            raise EmbeddingProviderError(
                f'Embedding request timed out after {self.config.timeout_seconds}s'
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingProviderError(f'Embedding request failed: {e}') from e

        if response.status_code != 200:
            status = response.status_code
            retryable = status >= 500 or status in _RETRYABLE_CLIENT_STATUSES
            raise EmbeddingProviderError(
                f'Embedding provider error {status}: {_error_detail(response)}',
                retryable=retryable,
                status_code=status,
            )

        return self._parse(response)

    def _parse(self, response: httpx.Response) -> list[float]:
        try:
            vector = response.json()['data'][0]['embedding']
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EmbeddingProviderError(
                f'Malformed embedding response: {e!r}', retryable=False
            ) from e

        if not isinstance(vector, list) or not vector:
            raise EmbeddingProviderError('Embedding response has no vector', retryable=False)

        expected = self.config.dimensions
        if expected is not None and len(vector) != expected:
            raise EmbeddingProviderError(
                f'Embedding has {len(vector)} dimensions, expected {expected}',
                retryable=False,
            )
        return [float(v) for v in vector]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict) and isinstance(payload.get('error'), dict):
        return str(payload['error'].get('message', payload['error']))
    return str(payload)[:200]
