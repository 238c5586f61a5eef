"""
Exception hierarchy for Lectern.

Only configuration and transport problems are errors. Missing indexes and
failed query embeddings are degraded modes with their own fallbacks, and a
cancelled answer is reported through the done event, never raised.
"""

from typing import Any, Dict, Optional


class LecternError(Exception):
    """Base exception for all Lectern errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class ConfigurationError(LecternError):
    """A provider is missing its API key or base URL, or none is usable."""


class SourceResolutionError(LecternError):
    """A retrieved chunk points at a document that does not exist."""


class TransportError(LecternError):
    """
    A provider call failed on the network or returned a bad response.

    Args:
        provider: Display name of the provider ("OpenAI", "Ollama", ...)
        message: Human-readable summary
        status_code: HTTP status when the server answered with a non-2xx code
        body: Raw response body for diagnosis
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        details: Dict[str, Any] = {"provider": provider}
        if status_code is not None:
            details["status_code"] = status_code
        if body:
            details["body"] = body
        super().__init__(message, details)
        self.provider = provider
        self.status_code = status_code
        self.body = body

    @classmethod
    def from_status(cls, provider: str, status_code: int, body: str) -> "TransportError":
        """Build the error for a non-2xx HTTP response."""
        return cls(
            provider,
            f"{provider} API error ({status_code}): {body}",
            status_code=status_code,
            body=body,
        )
