"""Text-generation clients for query rewriting and memory extraction.

Each supported wire format gets one small client class behind the
``CompletionClient`` protocol. ``CompletionRouter`` picks the client for a
"provider:model" reference taken from the tool-model setting.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import httpx
from groq import AsyncGroq

from .config import AppConfig
from .errors import ProviderNotConfiguredError


class CompletionClient(Protocol):
    """Anything that can complete a single-turn prompt."""

    async def complete(
        self,
        prompt: str,
        *,
        model: str,
        max_tokens: int | None = None,
        system: str | None = None,
    ) -> str:
        ...


def _build_messages(prompt: str, system: str | None) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    return messages


class GroqCompletionClient:
    """CompletionClient implementation that wraps AsyncGroq.

    Example:
        from groq import AsyncGroq
        from memoria.llm import GroqCompletionClient

        groq = AsyncGroq(api_key="...")
        llm = GroqCompletionClient(groq)
        text = await llm.complete("Hello", model="llama-3.1-70b-versatile")
    """

    def __init__(self, client: AsyncGroq) -> None:
        """Initialize the Groq client wrapper.

        Args:
            client: The AsyncGroq client instance to wrap.
        """
        self._client = client

    async def complete(
        self,
        prompt: str,
        *,
        model: str,
        max_tokens: int | None = None,
        system: str | None = None,
    ) -> str:
        """Complete a prompt and return the text response."""
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": _build_messages(prompt, system),
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        response = await self._client.chat.completions.create(**kwargs)
        return response.choices[0].message.content or ""


class OpenAICompatibleCompletionClient:
    """CompletionClient for any OpenAI-style /chat/completions endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def complete(
        self,
        prompt: str,
        *,
        model: str,
        max_tokens: int | None = None,
        system: str | None = None,
    ) -> str:
        """Complete a prompt and return the text response.

        Raises:
            httpx.HTTPError: On transport failure or an error status.
            ValueError: If the response body is not the expected shape.
        """
        payload: dict[str, Any] = {
            "model": model,
            "messages": _build_messages(prompt, system),
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        response = await self._http.post(
            f"{self.base_url}/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        response.raise_for_status()

        data = response.json()
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError("Invalid chat completion response") from e

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


@dataclass(frozen=True)
class ModelRef:
    """A "provider:model" reference."""

    provider_id: str
    model: str

    def __str__(self) -> str:
        return f"{self.provider_id}:{self.model}"


def parse_model_ref(value: str | None) -> ModelRef | None:
    """Parse "provider:model". Returns None for empty or malformed values."""
    if not value:
        return None
    provider_id, sep, model = value.strip().partition(":")
    if not sep or not provider_id or not model:
        return None
    return ModelRef(provider_id, model)


class CompletionRouter:
    """Routes completions to the client registered for each provider."""

    def __init__(self, clients: Mapping[str, CompletionClient] | None = None) -> None:
        self._clients: dict[str, CompletionClient] = dict(clients or {})

    def register(self, provider_id: str, client: CompletionClient) -> None:
        self._clients[provider_id] = client

    def has_provider(self, provider_id: str) -> bool:
        return provider_id in self._clients

    async def complete(
        self,
        model_ref: ModelRef,
        prompt: str,
        max_tokens: int | None = None,
    ) -> str:
        """Complete a prompt with the referenced provider and model.

        Raises:
            ProviderNotConfiguredError: If no client serves the provider.
        """
        client = self._clients.get(model_ref.provider_id)
        if client is None:
            raise ProviderNotConfiguredError(
                f"No completion client for provider '{model_ref.provider_id}'"
            )
        return await client.complete(prompt, model=model_ref.model, max_tokens=max_tokens)

    async def aclose(self) -> None:
        """Close clients that hold HTTP connections."""
        for client in self._clients.values():
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()

    @classmethod
    def from_config(cls, config: AppConfig) -> "CompletionRouter":
        """Build a router with one client per provider that has an API key."""
        router = cls()
        for provider_id, creds in config.credentials.items():
            if not creds.api_key:
                continue
            if provider_id == "groq":
                router.register(provider_id, GroqCompletionClient(AsyncGroq(api_key=creds.api_key)))
            elif creds.base_url:
                router.register(
                    provider_id,
                    OpenAICompatibleCompletionClient(creds.base_url, creds.api_key),
                )
        return router
