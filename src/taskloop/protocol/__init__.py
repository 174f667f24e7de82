"""Tag protocol: vocabulary, lexer, streaming parser and message types."""

from .lexer import TagLexer, closing_tag, opening_tag
from .parser import ParseMode, ParseState, StreamParser, parse_assistant_message
from .types import (
    ContentBlock,
    ContentPart,
    ConversationMessage,
    Role,
    TextBlock,
    TextPart,
    ToolInvocationRecord,
    ToolResultPart,
    ToolUseBlock,
    first_user_index,
)
from .vocabulary import ToolDescriptor, ToolParameter, ToolRegistry, create_default_registry

__all__ = [
    # Types
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
    # Vocabulary
    "ToolParameter",
    "ToolDescriptor",
    "ToolRegistry",
    "create_default_registry",
    # Lexer / parser
    "TagLexer",
    "opening_tag",
    "closing_tag",
    "ParseMode",
    "ParseState",
    "StreamParser",
    "parse_assistant_message",
]
