"""LLM Types - Data structures for LLM interactions.

Text generation may come back whole or as fragments. collect_text()
accepts every shape a generation call can return:
- a string
- an awaitable resolving to any of these shapes
- an async iterator of string fragments
- a sync iterator of string fragments
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Iterable, Optional, Sequence, Union

from ..protocol.types import ConversationMessage

GenerationResult = Union[str, Awaitable[Any], AsyncIterator[str], Iterable[str]]


@dataclass
class Message:
    """A chat message.

    Attributes:
        role: Message role (system, user, assistant)
        content: Message content
        name: Optional name for the message sender
    """

    role: str
    content: str
    name: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        """Convert to API format."""
        d = {"role": self.role, "content": self.content}
        if self.name:
            d["name"] = self.name
        return d

    @classmethod
    def from_conversation(cls, message: ConversationMessage) -> Message:
        return cls(role=message.role.value, content=message.render())


def to_chat_messages(
    history: Sequence[ConversationMessage], system: Optional[str] = None
) -> list[dict[str, str]]:
    """Render history (plus optional system prompt) into chat API dicts."""
    messages = []
    if system:
        messages.append(Message("system", system).to_dict())
    messages.extend(Message.from_conversation(m).to_dict() for m in history)
    return messages


@dataclass
class LLMResponse:
    """Response from an LLM call.

    Attributes:
        content: Generated text content
        model: Model that generated the response
        usage: Token usage statistics
        finish_reason: Why generation stopped
        raw: Raw API response
    """

    content: str
    model: Optional[str] = None
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: Optional[str] = None
    raw: Optional[dict[str, Any]] = None

    @classmethod
    def from_completion(cls, result: dict[str, Any]) -> LLMResponse:
        choice = result["choices"][0]
        return cls(
            content=choice["message"]["content"] or "",
            model=result.get("model"),
            usage=result.get("usage", {}),
            finish_reason=choice.get("finish_reason"),
            raw=result,
        )


async def collect_text(result: GenerationResult) -> str:
    """Concatenate a generation result into one string.

    Raises:
        TypeError: If ``result`` is none of the supported shapes
    """
    while inspect.isawaitable(result):
        result = await result

    if isinstance(result, str):
        return result
    if isinstance(result, LLMResponse):
        return result.content
    if hasattr(result, "__aiter__"):
        return "".join([fragment async for fragment in result])
    if isinstance(result, Iterable):
        return "".join(result)
    raise TypeError(f"Cannot collect text from {type(result).__name__}")


__all__ = [
    "Message",
    "LLMResponse",
    "GenerationResult",
    "to_chat_messages",
    "collect_text",
]
