"""LLM module - Text generation over OpenAI-compatible HTTP APIs.

- LLMProvider: generate / chat, whole or streamed
- LLMConfig: Configuration for API connections
- collect_text: Normalise any generation result into one string
"""

from .config import LLMConfig
from .provider import LLMProvider, parse_sse_line
from .types import GenerationResult, LLMResponse, Message, collect_text, to_chat_messages

__all__ = [
    "LLMProvider",
    "LLMConfig",
    "Message",
    "LLMResponse",
    "GenerationResult",
    "collect_text",
    "to_chat_messages",
    "parse_sse_line",
]
