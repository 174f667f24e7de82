"""Conversation session - The per-turn agent loop.

Each turn:
1. Compact history if the analyzer says the budget is getting tight
2. Stream the model's reply, feeding every fragment to a fresh ParseState
3. Dispatch each tool invocation as soon as its closing tag arrives
4. When the stream ends, append the assistant message and the tool results

History is only appended to at the end of a turn, so a turn that is
cancelled (or whose stream is abandoned) leaves history as it was.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Iterable, Optional

from opentelemetry import trace

from .config import ContextConfig, ProjectConfig
from .context.analyzer import ContextAnalyzer
from .context.compactor import CompactionResult, DeletedRange, HistoryCompactor
from .llm.types import to_chat_messages
from .protocol.parser import StreamParser
from .protocol.types import (
    ContentBlock,
    ConversationMessage,
    Role,
    TextBlock,
    ToolResultPart,
    ToolUseBlock,
)
from .protocol.vocabulary import ToolRegistry
from .tools import ToolDispatcher

if TYPE_CHECKING:
    from .llm import LLMProvider

# Get tracer for session spans
tracer = trace.get_tracer(__name__)

COMPLETION_TOOL = "attempt_completion"

DEFAULT_SYSTEM_PROMPT = "You are a skilled software engineer helping with a coding task."


def build_system_prompt(base_prompt: Optional[str], registry: ToolRegistry) -> str:
    """System prompt with the tag protocol and the tools the parser accepts."""
    base = base_prompt or DEFAULT_SYSTEM_PROMPT
    return f"""{base}

TOOL USE

Call a tool by writing its name as an XML-style tag, with each parameter in its own tag:

<tool_name>
<parameter_name>value</parameter_name>
</tool_name>

Use one tool per message and wait for its result before continuing.
When the task is done, present the result with {COMPLETION_TOOL}.

TOOLS

{registry.format_for_prompt()}"""


@dataclass
class TurnUpdate:
    """Progress of a streaming turn.

    Attributes:
        blocks: Parsed blocks so far (at most one partial, always last)
        results: Results of tools dispatched so far this turn
        done: True for the final update, after history was updated
    """

    blocks: list[ContentBlock]
    results: list[ToolResultPart] = field(default_factory=list)
    done: bool = False

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.blocks if isinstance(b, TextBlock))


@dataclass
class SessionResult:
    """Result of ConversationSession.run()."""

    answer: str
    turns: int = 0
    completed: bool = False
    compactions: int = 0


class ConversationSession:
    """Owns one conversation: its history, deleted range and compaction state.

    A session must be driven by a single task at a time.
    """

    def __init__(
        self,
        llm: LLMProvider,
        dispatcher: Optional[ToolDispatcher] = None,
        context: Optional[ContextConfig] = None,
        system_prompt: Optional[str] = None,
        session_id: Optional[str] = None,
    ):
        """Initialize session.

        Args:
            llm: Provider used for turns (chat_stream) and compaction (generate)
            dispatcher: Tool handlers; its registry is the parser vocabulary
            context: Budget, thresholds and compaction settings
            system_prompt: Base system prompt (tool section is appended)
            session_id: Identifier recorded on spans
        """
        self.llm = llm
        self.dispatcher = dispatcher or ToolDispatcher()
        self.context = context or ContextConfig()
        self.session_id = session_id or uuid.uuid4().hex[:12]

        self.parser = StreamParser(self.dispatcher.registry)
        self.analyzer = ContextAnalyzer(self.context.analyzer_config(), self.context.estimator())
        self.compactor = HistoryCompactor(
            llm.generate, self.analyzer, self.context.compaction_config()
        )
        self.system_prompt = build_system_prompt(system_prompt, self.dispatcher.registry)

        self.history: tuple[ConversationMessage, ...] = ()
        self.deleted_range: Optional[DeletedRange] = None

    @classmethod
    def from_config(
        cls,
        project_config: ProjectConfig,
        tools: Iterable[Any] = (),
        provider_name: Optional[str] = None,
        permission_callback=None,
    ) -> ConversationSession:
        """Build a session from taskloop.toml settings."""
        from .llm import LLMProvider

        session_id = uuid.uuid4().hex[:12]
        llm = LLMProvider.from_config(
            provider_name or project_config.session.provider, project_config, session_id
        )
        dispatcher = ToolDispatcher(tools, permission_callback=permission_callback)
        for tool_config in project_config.protocol_tools.values():
            if tool_config.name not in dispatcher.registry:
                dispatcher.registry.register(tool_config.to_descriptor())
        return cls(
            llm,
            dispatcher,
            context=project_config.context,
            system_prompt=project_config.session.system_prompt,
            session_id=session_id,
        )

    @property
    def budget(self) -> int:
        return self.context.max_tokens

    def add_user_message(self, text: str) -> None:
        self.history = self.history + (ConversationMessage.user(text),)

    async def prepare_history(self) -> CompactionResult:
        """Compact history between turns if needed."""
        result = await self.compactor.compact(self.history, self.budget, self.deleted_range)
        if result.did_compact:
            self.history = result.new_history
            self.deleted_range = result.deleted_range
        return result

    async def stream_turn(self) -> AsyncIterator[TurnUpdate]:
        """Run one model turn, yielding parse progress after every fragment.

        Tool invocations are dispatched exactly once, as soon as they close.
        The last update has ``done=True``; history is updated just before it.
        """
        with tracer.start_as_current_span(
            "session.turn",
            attributes={"session.id": self.session_id, "session.messages": len(self.history)},
        ) as span:
            compaction = await self.prepare_history()
            span.set_attribute("session.compacted", compaction.did_compact)

            messages = to_chat_messages(self.history, self.system_prompt)
            state = self.parser.new_state()
            results: list[ToolResultPart] = []
            handled = 0

            async for chunk in self.llm.chat_stream(messages):
                self.parser.feed(state, chunk)
                for block in state.blocks[handled:]:
                    result = await self._dispatch(block)
                    if result is not None:
                        results.append(result)
                handled = len(state.blocks)
                yield TurnUpdate(self.parser.snapshot(state), list(results))

            blocks = self.parser.finish(state)
            for block in blocks[handled:]:
                if isinstance(block, ToolUseBlock) and block.partial:
                    results.append(
                        ToolResultPart(
                            block.name,
                            "Tool call was incomplete and was not executed.",
                            is_error=True,
                        )
                    )

            self._record_turn(blocks, results)
            span.set_attribute("session.blocks", len(blocks))
            span.set_attribute("session.tool_results", len(results))
            yield TurnUpdate(blocks, results, done=True)

    async def run(self, user_input: str, max_turns: int = 10) -> SessionResult:
        """Add a user message and loop turns until the model stops calling tools."""
        self.add_user_message(user_input)
        result = SessionResult(answer="")

        for turn in range(max_turns):
            result.turns = turn + 1
            final: Optional[TurnUpdate] = None
            async for update in self.stream_turn():
                final = update

            if final is None:
                break

            completion = next(
                (
                    b
                    for b in final.blocks
                    if isinstance(b, ToolUseBlock) and b.name == COMPLETION_TOOL and not b.partial
                ),
                None,
            )
            if completion is not None:
                result.answer = completion.params.get("result", final.text)
                result.completed = True
                break

            if not final.results:
                result.answer = final.text
                result.completed = True
                break
        else:
            logging.warning("[taskloop.session] Stopped after %d turns without completion", max_turns)

        result.compactions = self.analyzer.compaction_count
        return result

    async def _dispatch(self, block: ContentBlock) -> Optional[ToolResultPart]:
        if not isinstance(block, ToolUseBlock):
            return None
        if block.name == COMPLETION_TOOL and block.name not in self.dispatcher:
            return None
        logging.info("[taskloop.session] Dispatching %s", block.name)
        return await self.dispatcher.dispatch(block)

    def _record_turn(self, blocks: list[ContentBlock], results: list[ToolResultPart]) -> None:
        appended = [ConversationMessage.from_blocks(blocks)]
        if results:
            appended.append(ConversationMessage(Role.USER, tuple(results)))
        self.history = self.history + tuple(appended)


__all__ = [
    "ConversationSession",
    "TurnUpdate",
    "SessionResult",
    "build_system_prompt",
    "COMPLETION_TOOL",
]
