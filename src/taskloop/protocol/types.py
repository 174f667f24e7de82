"""Protocol types - Parsed assistant output and conversation messages.

This module contains the data types shared by the parser, the context
compactor and the session loop:
- TextBlock / ToolUseBlock: content blocks produced by the stream parser
- TextPart / ToolInvocationRecord / ToolResultPart: parts of a history message
- ConversationMessage: an immutable entry in the conversation history
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union


class Role(Enum):
    """Author of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"


# ============================================================================
# Parser output
# ============================================================================


@dataclass
class TextBlock:
    """A span of free-form prose in assistant output.

    Attributes:
        text: Trimmed text of the span
        partial: True if the stream ended while the span was still open
    """

    text: str
    partial: bool = False

    @property
    def kind(self) -> str:
        return "text"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "partial": self.partial, "text": self.text}


@dataclass
class ToolUseBlock:
    """A tag-delimited tool invocation in assistant output.

    Attributes:
        name: Tool name (the outer tag)
        params: Parameter name -> trimmed string value
        partial: True until the tool's closing tag has been seen
    """

    name: str
    params: dict[str, str] = field(default_factory=dict)
    partial: bool = True

    @property
    def kind(self) -> str:
        return "tool_use"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "partial": self.partial,
            "name": self.name,
            "params": dict(self.params),
        }


ContentBlock = Union[TextBlock, ToolUseBlock]


# ============================================================================
# Conversation history
# ============================================================================


@dataclass(frozen=True)
class TextPart:
    """Plain text inside a message."""

    text: str


@dataclass(frozen=True)
class ToolInvocationRecord:
    """A tool call the assistant made, as recorded in history."""

    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)

    def to_markup(self) -> str:
        """Render back into the tag protocol the model writes."""
        lines = [f"<{self.name}>"]
        for key, value in self.arguments.items():
            lines.append(f"<{key}>{value}</{key}>")
        lines.append(f"</{self.name}>")
        return "\n".join(lines)


@dataclass(frozen=True)
class ToolResultPart:
    """Output of a tool call, fed back to the model.

    Attributes:
        reference: Name (or id) of the invocation this result answers
        payload: Result text
        is_error: Whether the tool failed
    """

    reference: str
    payload: str
    is_error: bool = False


ContentPart = Union[TextPart, ToolInvocationRecord, ToolResultPart]


@dataclass(frozen=True)
class ConversationMessage:
    """One immutable message of conversation history."""

    role: Role
    content: tuple[ContentPart, ...] = ()

    @classmethod
    def user(cls, text: str) -> ConversationMessage:
        return cls(Role.USER, (TextPart(text),))

    @classmethod
    def assistant(cls, text: str) -> ConversationMessage:
        return cls(Role.ASSISTANT, (TextPart(text),))

    @classmethod
    def from_blocks(cls, blocks: list[ContentBlock]) -> ConversationMessage:
        """Record parsed assistant output as a history message."""
        parts: list[ContentPart] = []
        for block in blocks:
            if isinstance(block, TextBlock):
                if block.text:
                    parts.append(TextPart(block.text))
            elif isinstance(block, ToolUseBlock):
                parts.append(ToolInvocationRecord(block.name, dict(block.params)))
            else:
                raise TypeError(f"Unknown content block: {block!r}")
        return cls(Role.ASSISTANT, tuple(parts))

    @property
    def text(self) -> str:
        """Concatenated text parts."""
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))

    def render(self) -> str:
        """Flatten all parts into the string sent to a chat API."""
        rendered = []
        for part in self.content:
            if isinstance(part, TextPart):
                rendered.append(part.text)
            elif isinstance(part, ToolInvocationRecord):
                rendered.append(part.to_markup())
            elif isinstance(part, ToolResultPart):
                status = "error" if part.is_error else "result"
                rendered.append(f"[{part.reference} {status}]\n{part.payload}")
            else:
                raise TypeError(f"Unknown content part: {part!r}")
        return "\n\n".join(rendered)

    def to_dict(self) -> dict[str, str]:
        """Convert to chat API format."""
        return {"role": self.role.value, "content": self.render()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConversationMessage:
        """Build a message from ``{"role": ..., "content": ...}``.

        ``content`` may be a string or a list of typed parts
        (``text`` / ``tool_use`` / ``tool_result``).
        """
        role = Role(data.get("role", "user"))
        content = data.get("content", "")
        if isinstance(content, str):
            return cls(role, (TextPart(content),))

        parts: list[ContentPart] = []
        for item in content:
            if isinstance(item, str):
                parts.append(TextPart(item))
                continue
            kind = item.get("type")
            if kind == "text":
                parts.append(TextPart(item.get("text", "")))
            elif kind == "tool_use":
                parts.append(ToolInvocationRecord(item.get("name", ""), item.get("input", {})))
            elif kind == "tool_result":
                payload = item.get("content", "")
                if not isinstance(payload, str):
                    payload = json.dumps(payload)
                parts.append(
                    ToolResultPart(
                        item.get("tool_use_id", ""), payload, bool(item.get("is_error"))
                    )
                )
            else:
                raise ValueError(f"Unknown content part type: {kind!r}")
        return cls(role, tuple(parts))


def first_user_index(history: tuple[ConversationMessage, ...], start: int = 0) -> Optional[int]:
    """Index of the first user message at or after ``start``."""
    for i in range(start, len(history)):
        if history[i].role is Role.USER:
            return i
    return None


__all__ = [
    "Role",
    "TextBlock",
    "ToolUseBlock",
    "ContentBlock",
    "TextPart",
    "ToolInvocationRecord",
    "ToolResultPart",
    "ContentPart",
    "ConversationMessage",
    "first_user_index",
]
