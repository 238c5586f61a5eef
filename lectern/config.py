"""Configuration models for the Lectern RAG core."""

import os
from dataclasses import dataclass, fields
from typing import Any, List, Mapping, Optional

from .errors import ConfigurationError
from .models import PROVIDER_PRECEDENCE, AiProvider


DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"


@dataclass
class LecternConfig:
    """Tuning knobs for retrieval, fusion and provider I/O."""

    # Answer pipeline
    answer_chunk_limit: int = 8     # chunks fed into the prompt
    source_limit: int = 6           # citations emitted per answer
    excerpt_words: int = 28

    # Hybrid fusion
    fusion_candidates: int = 20     # per sub-search, independent of the final limit
    agreement_bonus: float = 0.35   # added when vector and keyword search agree
    fts_score: float = 0.5          # flat score for FTS5 hits
    like_score: float = 0.3         # flat score for the LIKE fallback

    # Provider I/O
    connect_timeout: float = 10.0
    read_timeout: float = 120.0
    ollama_probe_ttl: float = 30.0
    ollama_probe_timeout: float = 2.0
    anthropic_max_tokens: int = 4096

    # Embeddings
    embedding_cache_size: int = 256
    embedding_max_attempts: int = 1  # >1 retries transport errors with backoff


@dataclass(frozen=True)
class Settings:
    """
    Read-only snapshot of provider credentials, endpoints and models.

    Settings are owned by the host application; Lectern only reads them,
    once per call.
    """

    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    ollama_base_url: Optional[str] = DEFAULT_OLLAMA_BASE_URL
    preferred_provider: Optional[str] = None

    openai_base_url: str = "https://api.openai.com"
    anthropic_base_url: str = "https://api.anthropic.com"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"

    openai_model: str = "gpt-4o"
    openai_embedding_model: str = "text-embedding-3-small"
    anthropic_model: str = "claude-sonnet-4-20250514"
    gemini_model: str = "gemini-2.0-flash"
    gemini_embedding_model: str = "text-embedding-004"
    ollama_model: str = "llama3"
    ollama_embedding_model: str = "nomic-embed-text"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Settings":
        """
        Build settings from a stored mapping.

        Unknown keys are ignored and empty strings count as unset, so a
        settings file written by an older or newer host still loads.
        """
        known = {f.name: f for f in fields(cls)}
        values = {}
        for key, value in data.items():
            if key not in known:
                continue
            if isinstance(value, str):
                value = value.strip()
                if not value:
                    continue
            values[key] = value
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Reads OPENAI_API_KEY, ANTHROPIC_API_KEY, GEMINI_API_KEY,
        OLLAMA_BASE_URL, LECTERN_PREFERRED_PROVIDER and LECTERN_<FIELD>
        overrides for models and base URLs (e.g. LECTERN_OPENAI_MODEL).
        """
        env = os.environ if environ is None else environ
        data = {
            "openai_api_key": env.get("OPENAI_API_KEY"),
            "anthropic_api_key": env.get("ANTHROPIC_API_KEY"),
            "gemini_api_key": env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY"),
            "ollama_base_url": env.get("OLLAMA_BASE_URL"),
            "preferred_provider": env.get("LECTERN_PREFERRED_PROVIDER"),
        }
        for f in fields(cls):
            if f.name.endswith("_model") or f.name.endswith("_base_url"):
                override = env.get(f"LECTERN_{f.name.upper()}")
                if override:
                    data[f.name] = override
        return cls.from_dict({k: v for k, v in data.items() if v is not None})

    # ============ Provider selection ============

    def is_usable(self, provider: AiProvider) -> bool:
        """Whether the provider has the credentials or endpoint it needs."""
        if provider is AiProvider.OPENAI:
            return bool(self.openai_api_key)
        if provider is AiProvider.ANTHROPIC:
            return bool(self.anthropic_api_key)
        if provider is AiProvider.GEMINI:
            return bool(self.gemini_api_key)
        return bool(self.ollama_base_url)

    def usable_providers(self) -> List[AiProvider]:
        return [p for p in PROVIDER_PRECEDENCE if self.is_usable(p)]

    def resolve_provider(self, override: "Optional[str | AiProvider]" = None) -> AiProvider:
        """
        Pick the provider for a request.

        Order: explicit override, then the preferred provider if it is
        usable, then the first usable provider in precedence order
        OpenAI > Anthropic > Gemini > Ollama.

        Raises:
            ConfigurationError: If the override is unknown or nothing is usable
        """
        if override is not None:
            try:
                return AiProvider.parse(override)
            except ValueError:
                raise ConfigurationError(f"Unknown AI provider: {override}")

        if self.preferred_provider:
            try:
                preferred = AiProvider.parse(self.preferred_provider)
            except ValueError:
                preferred = None
            if preferred is not None and self.is_usable(preferred):
                return preferred

        usable = self.usable_providers()
        if not usable:
            raise ConfigurationError(
                "No AI provider configured. Add an OpenAI, Anthropic or Gemini "
                "API key, or an Ollama base URL."
            )
        return usable[0]

    def resolve_embedding_provider(self, override: "Optional[str | AiProvider]" = None) -> AiProvider:
        """Default provider for standalone embedding calls: OpenAI if keyed, else Ollama."""
        if override is not None:
            return self.resolve_provider(override)
        return AiProvider.OPENAI if self.openai_api_key else AiProvider.OLLAMA

    # ============ Credential accessors ============

    def require_openai_key(self) -> str:
        if not self.openai_api_key:
            raise ConfigurationError("OpenAI API key not configured")
        return self.openai_api_key

    def require_anthropic_key(self) -> str:
        if not self.anthropic_api_key:
            raise ConfigurationError("Anthropic API key not configured")
        return self.anthropic_api_key

    def require_gemini_key(self) -> str:
        if not self.gemini_api_key:
            raise ConfigurationError("Gemini API key not configured")
        return self.gemini_api_key

    def require_ollama_url(self) -> str:
        if not self.ollama_base_url:
            raise ConfigurationError("Ollama base URL not configured")
        return self.ollama_base_url.rstrip("/")
