"""LLM Configuration - Connection settings for text generation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..config import LLMProviderConfig


@dataclass
class LLMConfig:
    """Configuration for an OpenAI-compatible chat completions endpoint.

    Attributes:
        base_url: API base URL (e.g., "https://api.openai.com/v1")
        model: Model name to use
        api_key: API key for authentication (optional for local models)
        temperature: Sampling temperature (0.0-2.0)
        max_tokens: Maximum tokens to generate
        timeout_ms: Request timeout in milliseconds
        context_window: Model context size, used as the compaction budget
    """

    base_url: str
    model: str
    api_key: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout_ms: int = 30000
    context_window: int = 128000

    @property
    def completions_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @classmethod
    def from_provider_config(cls, section: LLMProviderConfig) -> LLMConfig:
        """Build from a ``[llm.<name>]`` section of taskloop.toml."""
        return cls(
            base_url=section.api_base or "http://localhost:8000/v1",
            model=section.model or "unknown",
            api_key=section.api_key,
            temperature=section.temperature,
            max_tokens=section.max_tokens,
            timeout_ms=section.timeout_sec * 1000,
            context_window=section.context_window,
        )


__all__ = ["LLMConfig"]
