"""History Compactor - Replace older messages with a model-written memory.

Compaction runs between turns, after ContextAnalyzer has decided it is
needed. Three modes:

1. Decision (default): ask the model which message indices to keep
   verbatim, fold everything else into one memory message.
   Earlier memories are folded into the new one, so
   new history = [memory] + kept messages.
2. Range: fold a contiguous slice of older messages, sized by strategy,
   into a summary inserted right after the task message.
3. Non-destructive: append a memory of the unsummarized messages and
   remove nothing.

Every external generation call is guarded: a failed or malformed reply
degrades to a fallback (keep-recent decision, labelled placeholder
summaries) and never fails the turn. The new history is only assembled
after every call has returned, so a cancelled compaction leaves nothing
half-applied.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from opentelemetry import trace

from ..llm.types import GenerationResult, collect_text
from ..protocol.types import (
    ConversationMessage,
    Role,
    TextPart,
    ToolInvocationRecord,
    ToolResultPart,
    first_user_index,
)
from .analyzer import CompactionStrategy, ContextAnalysis, ContextAnalyzer
from .prompts import (
    GENERIC_MEMORY_PLACEHOLDER,
    LONG_MESSAGE_SYSTEM_PROMPT,
    MEMORY_SYSTEM_PROMPT,
    create_decision_prompt,
    create_long_message_prompt,
    create_memory_refresh_message,
    create_memory_structure_prompt,
    create_range_summary_prompt,
)

tracer = trace.get_tracer(__name__)

# Called as generate(prompt, system=...); LLMProvider.generate and
# LLMProvider.generate_stream both fit.
TextGenerator = Callable[..., GenerationResult]

DEFAULT_SUMMARY_INSTRUCTIONS = "Create a comprehensive summary of the removed messages."

DEFAULT_RANGE_FRACTIONS = {
    CompactionStrategy.LIGHT: 0.4,
    CompactionStrategy.STANDARD: 0.6,
    CompactionStrategy.AGGRESSIVE: 0.8,
    CompactionStrategy.EMERGENCY: 0.9,
}


class MemoryDecisionError(ValueError):
    """The model's keep/summarize decision could not be parsed."""


@dataclass(frozen=True)
class DeletedRange:
    """Half-open interval ``[start, end)`` of history holding compacted memory."""

    start: int
    end: int

    def __post_init__(self):
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"Invalid deleted range [{self.start}, {self.end})")

    def __len__(self) -> int:
        return self.end - self.start

    def __contains__(self, index: int) -> bool:
        return self.start <= index < self.end

    def to_list(self) -> list[int]:
        return [self.start, self.end]


@dataclass(frozen=True)
class MemoryDecision:
    """Which message indices to keep verbatim, and how to summarize the rest."""

    indices_to_keep: frozenset[int]
    summary_instructions: str


@dataclass
class CompactionConfig:
    """Configuration for history compaction.

    Attributes:
        algorithm: "decision" or "range"
        fallback_keep_recent: Messages kept when the decision is unusable
        long_message_chars: Text longer than this is summarized on its own first
        non_destructive: Append a memory instead of replacing messages
        range_fractions: Share of history folded per strategy (range algorithm)
    """

    algorithm: str = "decision"
    fallback_keep_recent: int = 10
    long_message_chars: int = 1000
    non_destructive: bool = False
    range_fractions: dict[CompactionStrategy, float] = field(
        default_factory=lambda: dict(DEFAULT_RANGE_FRACTIONS)
    )

    def __post_init__(self):
        if self.algorithm not in ("decision", "range"):
            raise ValueError(f"Unknown compaction algorithm: {self.algorithm!r}")


@dataclass
class CompactionResult:
    """Outcome of one compaction.

    Attributes:
        new_history: History to send from now on (the input itself if unchanged)
        deleted_range: Where compacted memory lives in new_history
        did_compact: Whether history was rewritten
        messages_replaced: Number of original messages folded into the memory
        tokens_before: Estimated cost of the input history
        tokens_after: Estimated cost of new_history
        summary_brief: First words of the memory, for logs and UIs
        strategy: Strategy the compaction ran with
    """

    new_history: tuple[ConversationMessage, ...]
    deleted_range: Optional[DeletedRange] = None
    did_compact: bool = False
    messages_replaced: int = 0
    tokens_before: int = 0
    tokens_after: int = 0
    summary_brief: str = ""
    strategy: Optional[CompactionStrategy] = None


_INDICES = re.compile(r"INDICES_TO_KEEP:\s*(\[[\d,\s]*\])", re.IGNORECASE)
_INSTRUCTIONS = re.compile(
    r"SUMMARY_INSTRUCTIONS:\s*(.*?)(?:INDICES_TO_KEEP|$)", re.IGNORECASE | re.DOTALL
)


def parse_memory_decision(text: str, message_count: int) -> MemoryDecision:
    """Parse a decision reply.

    Indices outside ``[0, message_count)`` are dropped.

    Raises:
        MemoryDecisionError: If the indices or the instructions are missing
    """
    match = _INDICES.search(text)
    if not match:
        raise MemoryDecisionError("No INDICES_TO_KEEP list in decision")
    try:
        indices = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        raise MemoryDecisionError(f"Unparsable INDICES_TO_KEEP: {match.group(1)}") from e

    match = _INSTRUCTIONS.search(text)
    instructions = match.group(1).strip() if match else ""
    if not instructions:
        raise MemoryDecisionError("No SUMMARY_INSTRUCTIONS in decision")

    kept = frozenset(i for i in indices if 0 <= i < message_count)
    return MemoryDecision(kept, instructions)


def keep_recent_decision(
    message_count: int, keep_recent: int, first_index: int = 0
) -> MemoryDecision:
    """Deterministic fallback: keep the last ``keep_recent`` messages.

    Of the messages from ``first_index`` on, at least two (the task message
    and one more) are left out, so the fallback always has something to fold.
    """
    keep = max(0, min(keep_recent, message_count - first_index - 2))
    start = message_count - keep
    return MemoryDecision(frozenset(range(start, message_count)), DEFAULT_SUMMARY_INSTRUCTIONS)


def memory_message(summary: str, replaced: int) -> ConversationMessage:
    return ConversationMessage(
        Role.ASSISTANT,
        (TextPart(f"[CONVERSATION MEMORY - {replaced} messages compacted]\n\n{summary}"),),
    )


def brief(summary: str, words: int = 5) -> str:
    return " ".join(summary.split()[:words]) + "..."


class HistoryCompactor:
    """Rewrites conversation history to fit the context budget.

    Usage:
        compactor = HistoryCompactor(provider.generate)
        result = await compactor.compact(history, max_budget=64000)
        if result.did_compact:
            history = result.new_history
    """

    def __init__(
        self,
        generate: TextGenerator,
        analyzer: Optional[ContextAnalyzer] = None,
        config: Optional[CompactionConfig] = None,
    ):
        """Initialize compactor.

        Args:
            generate: Text generation capability used for decisions and summaries
            analyzer: Analyzer deciding whether to compact (records compactions)
            config: Compaction configuration
        """
        self.generate = generate
        self.analyzer = analyzer or ContextAnalyzer()
        self.config = config or CompactionConfig()

    @property
    def estimator(self):
        return self.analyzer.estimator

    async def compact(
        self,
        history: Sequence[ConversationMessage],
        max_budget: Optional[int] = None,
        deleted_range: Optional[DeletedRange] = None,
        analysis: Optional[ContextAnalysis] = None,
    ) -> CompactionResult:
        """Compact ``history`` if the analyzer says it is needed.

        Args:
            history: Conversation messages, oldest first
            max_budget: Token budget passed to the analyzer
            deleted_range: Range returned by the previous compaction
            analysis: Precomputed analysis of ``history`` (skips re-analysis)

        Returns:
            CompactionResult; did_compact is False and new_history is the
            input when nothing was done
        """
        snapshot = tuple(history)
        if analysis is None:
            analysis = self.analyzer.analyze(snapshot, max_budget)

        if not analysis.needs_compaction:
            logging.info("[taskloop.context] Compaction not needed, skipping")
            return self._unchanged(history, snapshot, deleted_range, analysis)

        if self.config.non_destructive:
            mode = "append"
        else:
            mode = self.config.algorithm

        with tracer.start_as_current_span(
            "context.compact",
            attributes={
                "context.mode": mode,
                "context.strategy": analysis.strategy.label,
                "context.messages": len(snapshot),
                "context.tokens_before": analysis.total_cost,
            },
        ) as span:
            logging.info(
                "[taskloop.context] Compacting %d messages (%d tokens) with %s strategy, mode=%s",
                len(snapshot),
                analysis.total_cost,
                analysis.strategy.label,
                mode,
            )

            if mode == "append":
                budget = self.analyzer.config.max_tokens if max_budget is None else max_budget
                result = await self._compact_append(snapshot, deleted_range, analysis, budget)
            elif mode == "range":
                result = await self._compact_range(snapshot, deleted_range, analysis)
            else:
                result = await self._compact_decision(snapshot, deleted_range, analysis)

            if not result.did_compact:
                span.set_attribute("context.did_compact", False)
                return self._unchanged(history, snapshot, deleted_range, analysis)

            result.tokens_after = self.estimator.estimate_many(result.new_history)
            self.analyzer.record_compaction(result.tokens_after)

            span.set_attribute("context.did_compact", True)
            span.set_attribute("context.messages_replaced", result.messages_replaced)
            span.set_attribute("context.tokens_after", result.tokens_after)
            span.set_status(trace.Status(trace.StatusCode.OK))

            logging.info(
                "[taskloop.context] Compaction #%d complete: replaced %d messages, "
                "%d messages now, %d -> %d tokens",
                self.analyzer.compaction_count,
                result.messages_replaced,
                len(result.new_history),
                result.tokens_before,
                result.tokens_after,
            )
            return result

    # ------------------------------------------------------------------
    # Algorithms
    # ------------------------------------------------------------------

    async def _compact_decision(
        self,
        history: tuple[ConversationMessage, ...],
        deleted_range: Optional[DeletedRange],
        analysis: ContextAnalysis,
    ) -> CompactionResult:
        n = len(history)
        prior_end = deleted_range.end if deleted_range else 0
        decision = await self._request_decision(history, analysis.strategy, prior_end)

        keep = set(decision.indices_to_keep)
        task_index = first_user_index(history, prior_end)
        if task_index is not None:
            keep.add(task_index)

        summarize = [i for i in range(prior_end, n) if i not in keep]
        if not summarize:
            logging.info("[taskloop.context] Decision keeps every message, nothing to compact")
            return CompactionResult(history, deleted_range, did_compact=False)

        summary = await self._summarize_messages(
            history,
            summarize,
            decision.summary_instructions,
            analysis.strategy,
            previous_memory=[m.text for m in history[:prior_end]],
        )

        memory = memory_message(summary, len(summarize))
        kept = [history[i] for i in range(prior_end, n) if i in keep]
        new_history = (memory,) + tuple(kept)

        return CompactionResult(
            new_history=new_history,
            deleted_range=DeletedRange(0, 1),
            did_compact=True,
            messages_replaced=len(summarize),
            tokens_before=analysis.total_cost,
            summary_brief=brief(summary),
            strategy=analysis.strategy,
        )

    async def _compact_range(
        self,
        history: tuple[ConversationMessage, ...],
        deleted_range: Optional[DeletedRange],
        analysis: ContextAnalysis,
    ) -> CompactionResult:
        n = len(history)
        start = max(1, deleted_range.end) if deleted_range else 1
        fraction = self.config.range_fractions[analysis.strategy]

        end = int(n * fraction)
        if end <= start:
            # Previous compactions already cover this share; move past them.
            end = start + max(1, int((n - start) * fraction))
        end = min(end, n - 1)

        if end <= start:
            logging.info(
                "[taskloop.context] No uncompacted messages in range [%d, %d), nothing to compact",
                start,
                end,
            )
            return CompactionResult(history, deleted_range, did_compact=False)

        indices = list(range(start, end))
        rendered = await self._render_for_summary(history, indices)
        prompt = create_range_summary_prompt(history, rendered, analysis.strategy)
        summary = await self._summarize(prompt)

        memory = memory_message(summary, len(indices))
        new_history = history[:start] + (memory,) + history[end:]

        return CompactionResult(
            new_history=new_history,
            deleted_range=DeletedRange(1, start + 1),
            did_compact=True,
            messages_replaced=len(indices),
            tokens_before=analysis.total_cost,
            summary_brief=brief(summary),
            strategy=analysis.strategy,
        )

    async def _compact_append(
        self,
        history: tuple[ConversationMessage, ...],
        deleted_range: Optional[DeletedRange],
        analysis: ContextAnalysis,
        budget: int,
    ) -> CompactionResult:
        n = len(history)
        prior_end = deleted_range.end if deleted_range else 0
        indices = list(range(prior_end, n))
        if not indices:
            return CompactionResult(history, deleted_range, did_compact=False)

        summary = await self._summarize_messages(
            history, indices, DEFAULT_SUMMARY_INSTRUCTIONS, analysis.strategy
        )

        notice = create_memory_refresh_message(analysis.total_cost, budget)
        new_history = history + (notice, memory_message(summary, len(indices)))

        return CompactionResult(
            new_history=new_history,
            deleted_range=DeletedRange(0, len(new_history)),
            did_compact=True,
            messages_replaced=0,
            tokens_before=analysis.total_cost,
            summary_brief=brief(summary),
            strategy=analysis.strategy,
        )

    # ------------------------------------------------------------------
    # Generation calls
    # ------------------------------------------------------------------

    async def _request_decision(
        self,
        history: tuple[ConversationMessage, ...],
        strategy: CompactionStrategy,
        first_index: int = 0,
    ) -> MemoryDecision:
        prompt = create_decision_prompt(history, strategy, self.estimator.estimate)
        try:
            text = await self._generate(prompt, MEMORY_SYSTEM_PROMPT, "decision")
            return parse_memory_decision(text, len(history))
        except MemoryDecisionError as e:
            logging.warning(
                "[taskloop.context] Unusable memory decision (%s), keeping last %d messages",
                e,
                self.config.fallback_keep_recent,
            )
        except Exception as e:
            logging.error(
                "[taskloop.context] Memory decision call failed: %s, keeping last %d messages",
                e,
                self.config.fallback_keep_recent,
            )
        return keep_recent_decision(len(history), self.config.fallback_keep_recent, first_index)

    async def _summarize_messages(
        self,
        history: tuple[ConversationMessage, ...],
        indices: list[int],
        instructions: str,
        strategy: CompactionStrategy,
        previous_memory: Sequence[str] = (),
    ) -> str:
        rendered = await self._render_for_summary(history, indices)
        prompt = create_memory_structure_prompt(rendered, instructions, strategy, previous_memory)
        return await self._summarize(prompt)

    async def _summarize(self, prompt: str) -> str:
        try:
            summary = await self._generate(prompt, MEMORY_SYSTEM_PROMPT, "memory")
        except Exception as e:
            logging.error("[taskloop.context] Memory summary failed, using placeholder: %s", e)
            return GENERIC_MEMORY_PLACEHOLDER
        if not summary.strip():
            logging.warning("[taskloop.context] Empty memory summary, using placeholder")
            return GENERIC_MEMORY_PLACEHOLDER
        return summary.strip()

    async def _render_for_summary(
        self, history: tuple[ConversationMessage, ...], indices: list[int]
    ) -> list[str]:
        """Render messages for a summary prompt, shrinking long texts first."""
        rendered = await asyncio.gather(*(self._render_message(history[i]) for i in indices))
        return [
            f"MESSAGE {i} ({history[i].role.value.upper()}):\n{content}\n"
            for i, content in zip(indices, rendered)
        ]

    async def _render_message(self, message: ConversationMessage) -> str:
        parts = []
        for part in message.content:
            if isinstance(part, TextPart):
                if len(part.text) > self.config.long_message_chars:
                    parts.append(await self._summarize_long_text(part.text))
                else:
                    parts.append(part.text)
            elif isinstance(part, ToolInvocationRecord):
                parts.append(f"[TOOL: {part.name} with parameters]")
            elif isinstance(part, ToolResultPart):
                parts.append(f"[TOOL RESULT: {part.reference}]")
            else:
                parts.append(f"[{type(part).__name__} content]")
        return "\n".join(parts)

    async def _summarize_long_text(self, text: str) -> str:
        try:
            summary = await self._generate(
                create_long_message_prompt(text), LONG_MESSAGE_SYSTEM_PROMPT, "long_message"
            )
        except Exception as e:
            logging.error("[taskloop.context] Long message summary failed: %s", e)
            return f"[LONG MESSAGE OMITTED: {len(text)} characters, summary unavailable]"
        return f"[SUMMARIZED LONG MESSAGE: {summary.strip()}]"

    async def _generate(self, prompt: str, system: str, purpose: str) -> str:
        with tracer.start_as_current_span(
            "context.summarize",
            attributes={"context.purpose": purpose, "llm.prompt.length": len(prompt)},
        ) as span:
            text = await collect_text(self.generate(prompt, system=system))
            span.set_attribute("llm.response.length", len(text))
            return text

    @staticmethod
    def _unchanged(
        history: Sequence[ConversationMessage],
        snapshot: tuple[ConversationMessage, ...],
        deleted_range: Optional[DeletedRange],
        analysis: ContextAnalysis,
    ) -> CompactionResult:
        original = history if isinstance(history, tuple) else snapshot
        return CompactionResult(
            new_history=original,
            deleted_range=deleted_range,
            did_compact=False,
            tokens_before=analysis.total_cost,
            tokens_after=analysis.total_cost,
            strategy=analysis.strategy,
        )


__all__ = [
    "DeletedRange",
    "MemoryDecision",
    "MemoryDecisionError",
    "CompactionConfig",
    "CompactionResult",
    "HistoryCompactor",
    "TextGenerator",
    "parse_memory_decision",
    "keep_recent_decision",
    "memory_message",
]
