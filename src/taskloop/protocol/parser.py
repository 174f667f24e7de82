"""Stream parser - Incremental reconstruction of assistant output.

Model output arrives as a growing character stream that interleaves prose
with tag-delimited tool invocations::

    Sure, reading now.<read_file><path>a.ts</path></read_file>

StreamParser classifies one character at a time through four modes
(Idle, InText, InToolUse, InParam). Every piece of mutable parse progress
lives in an explicit ParseState owned by the caller; the parser object only
carries the vocabulary, so one parser can serve any number of streams.

Feeding a complete text in one chunk or in arbitrary pieces yields the same
blocks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .lexer import TagLexer, closing_tag
from .types import ContentBlock, TextBlock, ToolUseBlock
from .vocabulary import ToolRegistry, create_default_registry


class ParseMode(Enum):
    IDLE = "idle"
    IN_TEXT = "in_text"
    IN_TOOL_USE = "in_tool_use"
    IN_PARAM = "in_param"


@dataclass
class ParseState:
    """Progress of one parse pass. Never shared between streams.

    Attributes:
        buffer: All text received so far
        position: Number of buffer characters already classified
        mode: Current top-level mode
        text_start: Offset where the open text span begins
        tool_start: Offset just past the open tool's opening tag
        param_start: Offset where the open parameter value begins
        tool: The open tool invocation (params filled as they close)
        param: Name of the open parameter
        blocks: Blocks whose spans have closed, in order
    """

    buffer: str = ""
    position: int = 0
    mode: ParseMode = ParseMode.IDLE
    text_start: int = 0
    tool_start: int = 0
    param_start: int = 0
    tool: Optional[ToolUseBlock] = None
    param: Optional[str] = None
    blocks: list[ContentBlock] = field(default_factory=list)


class StreamParser:
    """Tag-protocol state machine over a closed tool vocabulary."""

    def __init__(self, registry: Optional[ToolRegistry] = None):
        self.registry = registry or create_default_registry()
        self.lexer = TagLexer.from_registry(self.registry)
        self._large_payload = self.registry.large_payload_params()
        self._large_by_tool: dict[str, list[str]] = {}
        for tool_name, param_name in sorted(self._large_payload):
            self._large_by_tool.setdefault(tool_name, []).append(param_name)

    def new_state(self) -> ParseState:
        return ParseState()

    def feed(self, state: ParseState, chunk: str) -> ParseState:
        """Append ``chunk`` and classify each new character."""
        state.buffer += chunk
        end = len(state.buffer)
        while state.position < end:
            state.position += 1
            self._step(state, state.position)
        return state

    def snapshot(self, state: ParseState) -> list[ContentBlock]:
        """Blocks so far, including the still-open span as a partial block.

        Does not modify ``state``.
        """
        blocks: list[ContentBlock] = list(state.blocks)
        buffer = state.buffer

        if state.tool is not None:
            params = dict(state.tool.params)
            if state.mode is ParseMode.IN_PARAM and state.param is not None:
                params[state.param] = buffer[state.param_start : state.position].strip()
            blocks.append(ToolUseBlock(state.tool.name, params, partial=True))
        elif state.mode is ParseMode.IN_TEXT:
            text = buffer[state.text_start : state.position].strip()
            if text:
                blocks.append(TextBlock(text, partial=True))

        return blocks

    def finish(self, state: ParseState) -> list[ContentBlock]:
        """Final blocks for a stream that has ended."""
        return self.snapshot(state)

    def parse(self, text: str) -> list[ContentBlock]:
        """Parse a complete (or truncated) message in one pass."""
        state = self.new_state()
        self.feed(state, text)
        return self.finish(state)

    def parse_chunks(self, chunks: Iterable[str]) -> list[ContentBlock]:
        state = self.new_state()
        for chunk in chunks:
            self.feed(state, chunk)
        return self.finish(state)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _step(self, state: ParseState, end: int) -> None:
        if state.mode is ParseMode.IN_PARAM:
            self._step_param(state, end)
        elif state.mode is ParseMode.IN_TOOL_USE:
            self._step_tool(state, end)
        else:
            self._step_text(state, end)

    def _step_param(self, state: ParseState, end: int) -> None:
        tool = state.tool
        name = state.param
        buffer = state.buffer
        tag = closing_tag(name)

        if (tool.name, name) in self._large_payload:
            # Only the newest character can complete a tag, so the last
            # occurrence lies within the final len(tag) characters.
            window = max(state.param_start, end - len(tag))
            index = self.lexer.find_last_close(buffer, name, window, end)
            if index == -1:
                return
            tool.params[name] = buffer[state.param_start : index].strip()
        elif self.lexer.ends_with_close(buffer, name, state.param_start, end):
            tool.params[name] = buffer[state.param_start : end - len(tag)].strip()
        else:
            return

        state.param = None
        state.mode = ParseMode.IN_TOOL_USE

    def _step_tool(self, state: ParseState, end: int) -> None:
        tool = state.tool
        buffer = state.buffer

        if self.lexer.ends_with_close(buffer, tool.name, state.tool_start, end):
            tool.partial = False
            state.blocks.append(tool)
            state.tool = None
            state.mode = ParseMode.IDLE
            return

        param = self.lexer.match_param_open(buffer, state.tool_start, end)
        if param is not None:
            state.param = param
            state.param_start = end
            state.mode = ParseMode.IN_PARAM
            return

        # A payload that contained its own closing tag closed early; the rest
        # of it landed in the tool body. Re-extract up to the last closing tag.
        for name in self._large_by_tool.get(tool.name, ()):
            if not self.lexer.ends_with_close(buffer, name, state.tool_start, end):
                continue
            value_start = self.lexer.find_first_open(buffer, name, state.tool_start, end)
            value_end = self.lexer.find_last_close(buffer, name, state.tool_start, end)
            if value_start != -1 and value_end > value_start:
                tool.params[name] = buffer[value_start:value_end].strip()

    def _step_text(self, state: ParseState, end: int) -> None:
        if state.mode is ParseMode.IDLE:
            state.mode = ParseMode.IN_TEXT
            state.text_start = end - 1

        buffer = state.buffer
        name = self.lexer.match_tool_open(buffer, state.text_start, end)
        if name is None:
            return

        tag_start = end - len(name) - 2
        text = buffer[state.text_start : tag_start].strip()
        if text:
            state.blocks.append(TextBlock(text, partial=False))

        state.tool = ToolUseBlock(name, {}, partial=True)
        state.tool_start = end
        state.mode = ParseMode.IN_TOOL_USE


def parse_assistant_message(
    text: str, registry: Optional[ToolRegistry] = None
) -> list[ContentBlock]:
    """Parse a full assistant message into content blocks."""
    return StreamParser(registry).parse(text)


__all__ = [
    "ParseMode",
    "ParseState",
    "StreamParser",
    "parse_assistant_message",
]
