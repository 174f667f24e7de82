"""taskloop - Streaming tool-call parsing and context compaction for coding agents.

The model writes prose interleaved with tag-delimited tool calls. taskloop
parses that output while it streams, dispatches each tool call as soon as it
closes, and keeps the resent conversation history within budget by
replacing older messages with a model-written memory.

Quick Start:
    ```python
    from taskloop import ConversationSession, LLMProvider, ToolDispatcher, tool

    @tool("read_file", description="Read a file")
    def read_file(path: str) -> str:
        return open(path).read()

    session = ConversationSession(
        LLMProvider.from_name("deepseek"),
        ToolDispatcher([read_file]),
    )
    result = await session.run("Can you explain what main.py does?")
    print(result.answer)
    ```

Parsing only:
    ```python
    from taskloop import StreamParser

    parser = StreamParser()
    state = parser.new_state()
    for chunk in chunks:
        parser.feed(state, chunk)
        render(parser.snapshot(state))
    blocks = parser.finish(state)
    ```

Module structure:
    - protocol/: Tag vocabulary, lexer, stream parser, message types
    - context/: Token estimation, compaction analysis, history compactor
    - llm/: LLM providers (direct HTTP, SSE streaming)
    - tools.py: Tool decorator and dispatcher
    - session.py: Per-turn agent loop
    - config.py: taskloop.toml loading
    - telemetry/: OpenTelemetry tracing
    - cli.py: Command line interface
"""

__version__ = "0.1.0"

# Config
from .config import ContextConfig, ProjectConfig, load_project_config

# Context
from .context import (
    CompactionResult,
    CompactionStrategy,
    ContextAnalysis,
    ContextAnalyzer,
    DeletedRange,
    HistoryCompactor,
    TokenEstimator,
)

# LLM
from .llm import LLMConfig, LLMProvider, collect_text

# Protocol
from .protocol import (
    ConversationMessage,
    ParseState,
    StreamParser,
    TextBlock,
    ToolRegistry,
    ToolUseBlock,
    parse_assistant_message,
)

# Session
from .session import ConversationSession, SessionResult, TurnUpdate

# Telemetry
from .telemetry import init_telemetry, shutdown_telemetry

# Tools
from .tools import Tool, ToolDispatcher, tool

__all__ = [
    "__version__",
    # Protocol
    "StreamParser",
    "ParseState",
    "parse_assistant_message",
    "TextBlock",
    "ToolUseBlock",
    "ConversationMessage",
    "ToolRegistry",
    # Context
    "TokenEstimator",
    "ContextAnalyzer",
    "ContextAnalysis",
    "CompactionStrategy",
    "HistoryCompactor",
    "CompactionResult",
    "DeletedRange",
    # LLM
    "LLMProvider",
    "LLMConfig",
    "collect_text",
    # Tools
    "tool",
    "Tool",
    "ToolDispatcher",
    # Session
    "ConversationSession",
    "TurnUpdate",
    "SessionResult",
    # Config
    "ProjectConfig",
    "ContextConfig",
    "load_project_config",
    # Telemetry
    "init_telemetry",
    "shutdown_telemetry",
]
