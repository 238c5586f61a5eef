"""Data models for the Lectern RAG core."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict


class AiProvider(str, Enum):
    """The closed set of LLM providers Lectern can talk to."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OLLAMA = "ollama"

    @property
    def display_name(self) -> str:
        return {
            AiProvider.OPENAI: "OpenAI",
            AiProvider.ANTHROPIC: "Anthropic",
            AiProvider.GEMINI: "Gemini",
            AiProvider.OLLAMA: "Ollama",
        }[self]

    @classmethod
    def parse(cls, value: "str | AiProvider") -> "AiProvider":
        """Parse a provider tag case-insensitively ('openai', 'Gemini', ...)."""
        if isinstance(value, AiProvider):
            return value
        return cls(str(value).strip().lower())


# Auto-detection precedence when no provider is requested or preferred
PROVIDER_PRECEDENCE = (
    AiProvider.OPENAI,
    AiProvider.ANTHROPIC,
    AiProvider.GEMINI,
    AiProvider.OLLAMA,
)


@dataclass
class ScoredChunk:
    """An indexed chunk of documentation text with a retrieval score."""
    id: int
    document_id: int
    chunk_index: int
    content_text: str
    heading_context: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SourceReference:
    """A user-facing citation for a chunk used to answer a question."""
    chunk_id: int
    document_id: int
    doc_slug: str
    doc_title: str
    heading_context: str
    excerpt: str


@dataclass(frozen=True)
class ChatMessage:
    """A single chat message sent to an LLM provider."""
    role: str  # 'system', 'user' or 'assistant'
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}
