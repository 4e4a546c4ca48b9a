"""Embedding generation against HTTP embedding APIs.

Supports OpenAI-compatible endpoints (OpenAI, SiliconFlow, Doubao) and the
DashScope request shape used by Qwen. Failures never raise out of
``EmbeddingClient.embed``: they are logged and reported as ``None`` so
callers can fall back to keyword matching.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

import httpx

from .config import ProviderCredentials
from .errors import EmbeddingError
from .settings import MemorySettings

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_ID = "openai"


class WireFormat(str, Enum):
    """Request/response shape of an embedding endpoint."""

    OPENAI = "openai"
    DASHSCOPE = "dashscope"

    def build_payload(self, model: str, text: str) -> dict[str, Any]:
        """Build the JSON request body for one text."""
        if self is WireFormat.DASHSCOPE:
            return {
                "model": model,
                "input": {"texts": [text]},
                "parameters": {"text_type": "query"},
            }
        return {"model": model, "input": text}

    def parse_response(self, data: Any) -> list[float]:
        """Extract the vector from a response body.

        Raises:
            EmbeddingError: If the body does not carry a vector.
        """
        try:
            if self is WireFormat.DASHSCOPE:
                vector = data["output"]["embeddings"][0]["embedding"]
            else:
                vector = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingError(f"Invalid {self.value} embedding response") from e

        if not isinstance(vector, list) or not vector:
            raise EmbeddingError(f"Invalid {self.value} embedding response")
        try:
            return [float(x) for x in vector]
        except (TypeError, ValueError) as e:
            raise EmbeddingError(f"Non-numeric {self.value} embedding") from e


@dataclass(frozen=True)
class EmbeddingProvider:
    """A known embedding provider preset."""

    id: str
    name: str
    api_url: str
    model: str
    dimensions: int
    wire_format: WireFormat = WireFormat.OPENAI


EMBEDDING_PROVIDERS: dict[str, EmbeddingProvider] = {
    p.id: p
    for p in (
        EmbeddingProvider(
            id="siliconflow",
            name="SiliconFlow",
            api_url="https://api.siliconflow.cn/v1/embeddings",
            model="BAAI/bge-m3",
            dimensions=1024,
        ),
        EmbeddingProvider(
            id="qwen",
            name="Qwen (DashScope)",
            api_url=(
                "https://dashscope.aliyuncs.com/api/v1/services/embeddings/"
                "text-embedding/text-embedding"
            ),
            model="text-embedding-v2",
            dimensions=1536,
            wire_format=WireFormat.DASHSCOPE,
        ),
        EmbeddingProvider(
            id="doubao",
            name="Doubao",
            api_url="https://ark.cn-beijing.volces.com/api/v3/embeddings",
            model="doubao-embedding",
            dimensions=1024,
        ),
        EmbeddingProvider(
            id="openai",
            name="OpenAI",
            api_url="https://api.openai.com/v1/embeddings",
            model="text-embedding-3-small",
            dimensions=1536,
        ),
    )
}


@dataclass(frozen=True)
class EmbeddingConfig:
    """Resolved settings for one embedding endpoint."""

    provider_id: str
    api_key: str
    model: str
    api_url: str
    wire_format: WireFormat = WireFormat.OPENAI

    @property
    def identity(self) -> str:
        """Provider identity tagged onto every vector this config produces."""
        return f"{self.provider_id}:{self.model}"


def resolve_embedding_config(
    settings: MemorySettings,
    credentials: Mapping[str, ProviderCredentials],
) -> EmbeddingConfig | None:
    """Work out which endpoint to call for embeddings.

    ``settings.embedding_model`` is either "provider:model" or a bare model
    name (served by OpenAI). The named provider is preferred; without
    credentials for it, OpenAI and then any provider with a key are tried.

    Args:
        settings: Current memory settings.
        credentials: API keys and base URLs by provider id.

    Returns:
        The resolved config, or None when nothing usable is configured.
    """
    raw = settings.embedding_model
    provider_id = DEFAULT_PROVIDER_ID
    model = raw or EMBEDDING_PROVIDERS[DEFAULT_PROVIDER_ID].model

    if raw and ":" in raw:
        head, _, tail = raw.partition(":")
        provider_id = head or DEFAULT_PROVIDER_ID
        model = tail or model

    candidates = [provider_id]
    if provider_id != DEFAULT_PROVIDER_ID:
        candidates.append(DEFAULT_PROVIDER_ID)
    candidates.extend(pid for pid in credentials if pid not in candidates)

    for pid in candidates:
        creds = credentials.get(pid)
        if creds is None or not creds.api_key:
            continue

        preset = EMBEDDING_PROVIDERS.get(pid)
        if preset is not None:
            api_url = preset.api_url
            wire_format = preset.wire_format
        elif creds.base_url:
            api_url = f"{creds.base_url.rstrip('/')}/embeddings"
            wire_format = WireFormat.OPENAI
        else:
            logger.warning("No embedding API URL for provider %s", pid)
            continue

        return EmbeddingConfig(
            provider_id=pid,
            api_key=creds.api_key,
            model=model,
            api_url=api_url,
            wire_format=wire_format,
        )

    return None


ConfigSource = Callable[[], EmbeddingConfig | None]


class EmbeddingClient:
    """Turns text into vectors through the configured provider.

    The config is resolved again on every call so settings changes apply
    immediately. There are no retries: a failed call returns None and the
    affected memory is embedded on the next backfill.
    """

    def __init__(
        self,
        config_source: ConfigSource,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the client.

        Args:
            config_source: Returns the current EmbeddingConfig, or None.
            http_client: Optional shared HTTP client (not closed by aclose).
            timeout: Request timeout in seconds for an owned client.
        """
        self._config_source = config_source
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def identity(self) -> str | None:
        """Identity of the currently configured provider, if any."""
        config = self._config_source()
        return config.identity if config else None

    async def embed(self, text: str) -> list[float] | None:
        """Embed one text.

        Returns:
            The vector, or None if no provider is configured or the call
            failed for any reason.
        """
        config = self._config_source()
        if config is None:
            logger.debug("No embedding configuration, skipping embed")
            return None

        try:
            return await self._request(config, text)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Embedding request to %s failed: %s", config.api_url, e)
        except EmbeddingError as e:
            logger.warning("Embedding failed: %s", e)
        except ValueError as e:
            logger.warning("Embedding response was not JSON: %s", e)
        return None

    async def embed_batch(self, texts: list[str]) -> list[list[float] | None]:
        """Embed texts one at a time, preserving order.

        Each item fails independently; a None entry marks a failed text.
        """
        results: list[list[float] | None] = []
        for text in texts:
            results.append(await self.embed(text))
        return results

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    async def _request(self, config: EmbeddingConfig, text: str) -> list[float]:
        response = await self._http.post(
            config.api_url,
            json=config.wire_format.build_payload(config.model, text),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {config.api_key}",
            },
        )
        if response.status_code >= 400:
            raise EmbeddingError(
                f"Embedding API error: {response.status_code} - {response.text[:200]}"
            )
        return config.wire_format.parse_response(response.json())
