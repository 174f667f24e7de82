"""Tag lexer - Suffix matching of protocol tags.

The parser appends one character at a time and asks whether the text
accumulated so far now *ends* with a known tag. Checking only the suffix
keeps the cost per character bounded by the vocabulary size and tag length,
never by the size of the buffer.
"""

from __future__ import annotations

from typing import Iterable, Optional

from .vocabulary import ToolRegistry


def opening_tag(name: str) -> str:
    return f"<{name}>"


def closing_tag(name: str) -> str:
    return f"</{name}>"


class TagLexer:
    """Recognises opening/closing tags for a closed vocabulary of names.

    All lookups take a ``[start, end)`` window into the buffer so callers can
    scope a match to the span they are in without slicing.
    """

    def __init__(self, tool_names: Iterable[str], param_names: Iterable[str]):
        self.tool_names = tuple(tool_names)
        self.param_names = tuple(param_names)
        self._tool_tags = tuple((name, opening_tag(name)) for name in self.tool_names)
        self._param_tags = tuple((name, opening_tag(name)) for name in self.param_names)

    @classmethod
    def from_registry(cls, registry: ToolRegistry) -> TagLexer:
        return cls(registry.tool_names(), registry.param_names())

    def match_tool_open(self, buffer: str, start: int, end: int) -> Optional[str]:
        """Tool name whose opening tag ends exactly at ``end``, if any."""
        return self._match(self._tool_tags, buffer, start, end)

    def match_param_open(self, buffer: str, start: int, end: int) -> Optional[str]:
        """Parameter name whose opening tag ends exactly at ``end``, if any."""
        return self._match(self._param_tags, buffer, start, end)

    @staticmethod
    def ends_with_close(buffer: str, name: str, start: int, end: int) -> bool:
        return buffer.endswith(closing_tag(name), start, end)

    @staticmethod
    def find_first_open(buffer: str, name: str, start: int, end: int) -> int:
        """Offset just past the first ``<name>`` in the window, or -1."""
        tag = opening_tag(name)
        index = buffer.find(tag, start, end)
        return -1 if index == -1 else index + len(tag)

    @staticmethod
    def find_last_close(buffer: str, name: str, start: int, end: int) -> int:
        """Offset of the last ``</name>`` in the window, or -1."""
        return buffer.rfind(closing_tag(name), start, end)

    @staticmethod
    def _match(tags: tuple[tuple[str, str], ...], buffer: str, start: int, end: int) -> Optional[str]:
        for name, tag in tags:
            if buffer.endswith(tag, start, end):
                return name
        return None


__all__ = ["TagLexer", "opening_tag", "closing_tag"]
