"""
Provider clients: embeddings, streaming chat and connection checks.

Every provider offers the same three capabilities. The provider set is
closed, so dispatch goes through ``create_provider_client`` rather than
open-ended registration.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Tuple, Type

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI

from .cancellation import CancellationRegistry
from .config import LecternConfig, Settings
from .errors import ConfigurationError, TransportError
from .events import EventSink
from .models import AiProvider, ChatMessage
from .streaming import (
    AnthropicStreamDecoder,
    GeminiStreamDecoder,
    LineDecoder,
    OllamaStreamDecoder,
    OpenAIStreamDecoder,
    StreamState,
    relay_stream,
)


logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

ANTHROPIC_NO_EMBEDDINGS = (
    "Anthropic does not provide an embedding API. "
    "Please configure Ollama, OpenAI, or Gemini for embeddings."
)

# (url, headers, query params, json body)
ChatRequest = Tuple[str, Dict[str, str], Dict[str, str], Dict[str, Any]]


def _floats(value: Any, provider: str) -> List[float]:
    if not isinstance(value, list) or not value:
        raise TransportError(provider, f"No embedding returned from {provider}")
    try:
        return [float(v) for v in value]
    except (TypeError, ValueError):
        raise TransportError(provider, f"Failed to parse {provider} embedding response")


class ProviderClient(ABC):
    """Base class for provider clients bound to one settings snapshot."""

    provider: ClassVar[AiProvider]

    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient,
        config: Optional[LecternConfig] = None,
    ):
        self.settings = settings
        self.http = http
        self.config = config or LecternConfig()

    @property
    def name(self) -> str:
        return self.provider.display_name

    @property
    @abstractmethod
    def embedding_model(self) -> str:
        """Model identifier used for embeddings."""
        pass

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        pass

    @abstractmethod
    async def test_connection(self) -> str:
        """Make a minimal live call; return a success message or raise."""
        pass

    @abstractmethod
    def chat_request(self, messages: Sequence[ChatMessage]) -> ChatRequest:
        """Build the streaming chat request for this provider."""
        pass

    @abstractmethod
    def stream_decoder(self) -> LineDecoder:
        pass

    # ============ Shared HTTP helpers ============

    async def _post_json(
        self,
        url: str,
        body: Dict[str, Any],
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        what: str = "request",
    ) -> Any:
        try:
            response = await self.http.post(url, json=body, headers=headers, params=params)
        except httpx.HTTPError as e:
            raise TransportError(self.name, f"{self.name} {what} failed: {e}") from e
        if not response.is_success:
            raise TransportError.from_status(self.name, response.status_code, response.text)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                self.name, f"Failed to parse {self.name} response: {e}", body=response.text
            ) from e

    async def _check(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> str:
        try:
            response = await self.http.request(method, url, headers=headers, params=params, json=json)
        except httpx.HTTPError as e:
            raise TransportError(self.name, f"Connection failed: {e}") from e
        if not response.is_success:
            raise TransportError.from_status(self.name, response.status_code, response.text)
        return f"{self.name} connection successful"

    # ============ Streaming chat ============

    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        request_id: str,
        sink: EventSink,
        registry: CancellationRegistry,
    ) -> StreamState:
        """
        Stream a chat completion to ``sink``.

        Returns the terminal state (completed or cancelled).

        Raises:
            ConfigurationError: Missing API key or base URL
            TransportError: Network failure or non-2xx status
        """
        url, headers, params, body = self.chat_request(messages)
        logger.debug("%s stream %s: %s", self.name, request_id, StreamState.CONNECTING.value)
        try:
            async with self.http.stream(
                "POST", url, json=body, headers=headers, params=params
            ) as response:
                if not response.is_success:
                    text = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError.from_status(self.name, response.status_code, text)
                logger.debug("%s stream %s: %s", self.name, request_id, StreamState.STREAMING.value)
                return await relay_stream(
                    response.aiter_bytes(), self.stream_decoder(), request_id, sink, registry
                )
        except httpx.HTTPError as e:
            logger.debug("%s stream %s: %s", self.name, request_id, StreamState.FAILED.value)
            raise TransportError(self.name, f"{self.name} request failed: {e}") from e


class OpenAIClient(ProviderClient):
    provider = AiProvider.OPENAI

    @property
    def embedding_model(self) -> str:
        return self.settings.openai_embedding_model

    @property
    def base_url(self) -> str:
        return self.settings.openai_base_url.rstrip("/")

    def _sdk(self) -> AsyncOpenAI:
        # SDK retries are off: a failed call is surfaced, the user may re-ask
        return AsyncOpenAI(
            api_key=self.settings.require_openai_key(),
            base_url=f"{self.base_url}/v1",
            http_client=self.http,
            max_retries=0,
        )

    async def embed(self, text: str) -> List[float]:
        client = self._sdk()
        try:
            response = await client.embeddings.create(model=self.embedding_model, input=text)
            data = response.data
        except APIStatusError as e:
            raise TransportError.from_status(self.name, e.status_code, e.response.text) from e
        except APIConnectionError as e:
            raise TransportError(self.name, f"OpenAI embedding request failed: {e}") from e
        except APIError as e:
            raise TransportError(self.name, f"OpenAI embedding request failed: {e}") from e
        except (AttributeError, ValueError) as e:
            # The SDK hands back raw text for a non-JSON body
            raise TransportError(self.name, f"Failed to parse OpenAI response: {e}") from e
        if not isinstance(data, list) or not data:
            raise TransportError(self.name, "No embedding returned from OpenAI")
        return _floats(getattr(data[0], "embedding", None), self.name)

    async def test_connection(self) -> str:
        client = self._sdk()
        try:
            await client.models.list()
        except APIStatusError as e:
            raise TransportError.from_status(self.name, e.status_code, e.response.text) from e
        except APIConnectionError as e:
            raise TransportError(self.name, f"Connection failed: {e}") from e
        except APIError as e:
            raise TransportError(self.name, f"Connection failed: {e}") from e
        return "OpenAI connection successful"

    def chat_request(self, messages: Sequence[ChatMessage]) -> ChatRequest:
        key = self.settings.require_openai_key()
        return (
            f"{self.base_url}/v1/chat/completions",
            {"Authorization": f"Bearer {key}"},
            {},
            {
                "model": self.settings.openai_model,
                "messages": [m.to_dict() for m in messages],
                "stream": True,
            },
        )

    def stream_decoder(self) -> LineDecoder:
        return OpenAIStreamDecoder()


class AnthropicClient(ProviderClient):
    provider = AiProvider.ANTHROPIC

    @property
    def embedding_model(self) -> str:
        raise ConfigurationError(ANTHROPIC_NO_EMBEDDINGS)

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.settings.require_anthropic_key(),
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    @property
    def messages_url(self) -> str:
        return f"{self.settings.anthropic_base_url.rstrip('/')}/v1/messages"

    async def embed(self, text: str) -> List[float]:
        raise ConfigurationError(ANTHROPIC_NO_EMBEDDINGS)

    async def test_connection(self) -> str:
        body = {
            "model": self.settings.anthropic_model,
            "max_tokens": 1,
            "messages": [{"role": "user", "content": "Hi"}],
        }
        return await self._check("POST", self.messages_url, headers=self._headers(), json=body)

    def chat_request(self, messages: Sequence[ChatMessage]) -> ChatRequest:
        headers = self._headers()
        # Anthropic takes the system prompt as a top-level field
        system = next((m.content for m in messages if m.role == "system"), None)
        body: Dict[str, Any] = {
            "model": self.settings.anthropic_model,
            "max_tokens": self.config.anthropic_max_tokens,
            "messages": [m.to_dict() for m in messages if m.role != "system"],
            "stream": True,
        }
        if system is not None:
            body["system"] = system
        return self.messages_url, headers, {}, body

    def stream_decoder(self) -> LineDecoder:
        return AnthropicStreamDecoder()


class GeminiClient(ProviderClient):
    provider = AiProvider.GEMINI

    @property
    def embedding_model(self) -> str:
        return self.settings.gemini_embedding_model

    @property
    def api_root(self) -> str:
        return f"{self.settings.gemini_base_url.rstrip('/')}/v1beta"

    async def embed(self, text: str) -> List[float]:
        key = self.settings.require_gemini_key()
        model = self.embedding_model
        data = await self._post_json(
            f"{self.api_root}/models/{model}:embedContent",
            {"model": f"models/{model}", "content": {"parts": [{"text": text}]}},
            params={"key": key},
            what="embedding request",
        )
        embedding = data.get("embedding") if isinstance(data, dict) else None
        values = embedding.get("values") if isinstance(embedding, dict) else None
        return _floats(values, self.name)

    async def test_connection(self) -> str:
        key = self.settings.require_gemini_key()
        return await self._check("GET", f"{self.api_root}/models", params={"key": key})

    def chat_request(self, messages: Sequence[ChatMessage]) -> ChatRequest:
        key = self.settings.require_gemini_key()
        system = next((m.content for m in messages if m.role == "system"), "")
        prompt = "\n\n".join(m.content for m in messages if m.role == "user")
        body = {
            "systemInstruction": {"parts": [{"text": system}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }
        return (
            f"{self.api_root}/models/{self.settings.gemini_model}:streamGenerateContent",
            {},
            {"alt": "sse", "key": key},
            body,
        )

    def stream_decoder(self) -> LineDecoder:
        return GeminiStreamDecoder()


class OllamaClient(ProviderClient):
    provider = AiProvider.OLLAMA

    @property
    def embedding_model(self) -> str:
        return self.settings.ollama_embedding_model

    async def embed(self, text: str) -> List[float]:
        base_url = self.settings.require_ollama_url()
        data = await self._post_json(
            f"{base_url}/api/embeddings",
            {"model": self.embedding_model, "prompt": text},
            what="embedding request",
        )
        return _floats(data.get("embedding") if isinstance(data, dict) else None, self.name)

    async def test_connection(self) -> str:
        base_url = self.settings.require_ollama_url()
        try:
            response = await self.http.get(base_url)
        except httpx.HTTPError as e:
            raise TransportError(
                self.name, f"Ollama not reachable: {e}. Is Ollama running?"
            ) from e
        if not response.is_success:
            raise TransportError(
                self.name,
                f"Ollama returned status {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        return "Ollama connection successful"

    def chat_request(self, messages: Sequence[ChatMessage]) -> ChatRequest:
        base_url = self.settings.require_ollama_url()
        body = {
            "model": self.settings.ollama_model,
            "messages": [m.to_dict() for m in messages],
            "stream": True,
        }
        return f"{base_url}/api/chat", {}, {}, body

    def stream_decoder(self) -> LineDecoder:
        return OllamaStreamDecoder()


# ============ Provider Factory ============

_CLIENTS: Dict[AiProvider, Type[ProviderClient]] = {
    AiProvider.OPENAI: OpenAIClient,
    AiProvider.ANTHROPIC: AnthropicClient,
    AiProvider.GEMINI: GeminiClient,
    AiProvider.OLLAMA: OllamaClient,
}


def create_provider_client(
    provider: AiProvider,
    settings: Settings,
    http: httpx.AsyncClient,
    config: Optional[LecternConfig] = None,
) -> ProviderClient:
    """
    Create the client for a provider.

    Example:
        >>> client = create_provider_client(AiProvider.OLLAMA, Settings(), http)
        >>> await client.test_connection()
        'Ollama connection successful'
    """
    return _CLIENTS[AiProvider.parse(provider)](settings, http, config)
