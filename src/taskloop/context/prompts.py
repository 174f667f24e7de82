"""Prompt templates used by the history compactor."""

from __future__ import annotations

import re
from typing import Callable, Sequence

from ..protocol.types import ConversationMessage, Role, TextPart
from .analyzer import CompactionStrategy

MEMORY_SYSTEM_PROMPT = "You are an AI assistant organizing your memory of a technical conversation."
LONG_MESSAGE_SYSTEM_PROMPT = "You are an AI assistant summarizing a technical message."

DECISION_INSTRUCTIONS = {
    CompactionStrategy.EMERGENCY: (
        "EMERGENCY: the context is nearly full. Summarize very aggressively and "
        "keep only the most recent and critical messages."
    ),
    CompactionStrategy.AGGRESSIVE: (
        "Token usage is high. Summarize aggressively but keep the key context."
    ),
    CompactionStrategy.STANDARD: (
        "Build a balanced memory that keeps important context and reduces token usage."
    ),
    CompactionStrategy.LIGHT: (
        "Only light optimization is needed. Summarize older, less relevant messages."
    ),
}

STRUCTURE_INSTRUCTIONS = {
    CompactionStrategy.EMERGENCY: (
        "EMERGENCY: token usage is very high. Write an extremely focused, concise memory."
    ),
    CompactionStrategy.AGGRESSIVE: (
        "Token usage is high. Write a focused memory of the most important information."
    ),
    CompactionStrategy.STANDARD: "Write a balanced memory that organizes key information efficiently.",
    CompactionStrategy.LIGHT: "Write a comprehensive memory of all important details.",
}

GENERIC_MEMORY_PLACEHOLDER = """# MEMORY STRUCTURE (generated without summarizer)

## CURRENT TASK
Continuing the current task; earlier messages were compacted.

## CODE CONTEXT
Files, paths and implementation details discussed earlier still apply.

## TECHNICAL DECISIONS
Earlier technical decisions and their rationale still apply.

## NEXT STEPS
Continue the implementation as previously discussed."""

_TASK_PATTERNS = [
    re.compile(r"^(?:can you|could you|please|i want|i need|help me)", re.IGNORECASE),
    re.compile(r"^(?:let'?s|we should|we need to)", re.IGNORECASE),
    re.compile(r"^(?:actually|instead|but now|switching)", re.IGNORECASE),
    re.compile(r"(?:task|goal|objective)s?:", re.IGNORECASE),
    re.compile(r"\?$"),
]


def looks_like_task(text: str) -> bool:
    """Whether ``text`` reads like a request that defines a task."""
    text = text.strip()
    return any(pattern.search(text) for pattern in _TASK_PATTERNS)


def first_text(message: ConversationMessage) -> str:
    for part in message.content:
        if isinstance(part, TextPart):
            return part.text
    return ""


def extract_current_task(history: Sequence[ConversationMessage]) -> str:
    """Best guess at the task the conversation is working on.

    The most recent task-like user message within the last 10 messages,
    else the first user message among the first 5.
    """
    n = len(history)
    for i in range(n - 1, max(n - 10, 0) - 1, -1):
        message = history[i]
        if message.role is Role.USER:
            text = first_text(message)
            if text and looks_like_task(text):
                return text

    for message in history[:5]:
        if message.role is Role.USER:
            text = first_text(message)
            if text:
                return text

    return "Ongoing technical discussion"


def brief_summary(history: Sequence[ConversationMessage]) -> str:
    task = extract_current_task(history)
    users = sum(1 for m in history if m.role is Role.USER)
    assistants = len(history) - users
    return (
        f"Task: {task}\n"
        f"Total messages: {len(history)} ({users} user, {assistants} assistant)\n"
        f"Messages are numbered 0 to {len(history) - 1}"
    )


def create_decision_prompt(
    history: Sequence[ConversationMessage],
    strategy: CompactionStrategy,
    estimate: Callable[[ConversationMessage], int],
) -> str:
    """Prompt asking the model which messages to keep verbatim."""
    costs = [estimate(m) for m in history]
    total = sum(costs)
    average = round(total / len(costs)) if costs else 0
    largest = sorted(enumerate(costs), key=lambda item: item[1], reverse=True)[:5]
    largest_lines = "\n".join(f"- Message {i}: {cost} tokens" for i, cost in largest)

    return f"""You are managing the memory of an ongoing technical conversation with {len(history)} messages.

{DECISION_INSTRUCTIONS[strategy]}

CONVERSATION SUMMARY:
{brief_summary(history)}

TOKEN STATISTICS:
- Total tokens: {total}
- Average per message: {average}
- Largest messages:
{largest_lines}

Decide which messages to keep verbatim and which to fold into a summary.
- Keep the most recent messages
- Keep messages with critical decisions, code or technical details
- Summarize explanations, discussion and context-setting messages

Respond in exactly this format:
INDICES_TO_KEEP: [comma separated message indices]
SUMMARY_INSTRUCTIONS: how to summarize the removed messages"""


def create_long_message_prompt(text: str) -> str:
    return f"""Summarize this long technical message. Keep exactly:
1) Code snippets
2) File paths and identifiers
3) Commands
4) Key technical decisions

Aim for roughly a third of the original length.

MESSAGE:
{text}"""


def create_memory_structure_prompt(
    rendered_messages: Sequence[str],
    instructions: str,
    strategy: CompactionStrategy,
    previous_memory: Sequence[str] = (),
) -> str:
    """Prompt for the consolidated memory replacing ``rendered_messages``.

    ``previous_memory`` holds the text of memories from earlier compactions;
    the new memory supersedes them.
    """
    body = "\n---\n".join(rendered_messages)
    earlier = ""
    if previous_memory:
        joined = "\n---\n".join(previous_memory)
        earlier = f"""

EARLIER MEMORY (fold this into the new memory, it will be removed):
{joined}"""
    return f"""{STRUCTURE_INSTRUCTIONS[strategy]}

You are writing a memory structure that replaces {len(rendered_messages)} messages of an ongoing technical conversation.

SUMMARY INSTRUCTIONS:
{instructions}{earlier}

MESSAGES TO SUMMARIZE:
{body}

The memory must:
1. Keep code snippets, file paths, technical decisions and key context
2. Use a concise, hierarchical layout with clear sections
3. Leave out pleasantries and repetition

It replaces these messages in the history, so the conversation must be able to continue from it."""


def create_range_summary_prompt(
    history: Sequence[ConversationMessage],
    rendered_messages: Sequence[str],
    strategy: CompactionStrategy,
) -> str:
    """Prompt for summarizing one contiguous slice of older messages."""
    body = "\n---\n".join(rendered_messages)
    return f"""{STRUCTURE_INSTRUCTIONS[strategy]}

CURRENT TASK: {extract_current_task(history)}

Organize the following earlier messages into a memory overview with:
1. The current task and its requirements
2. Code files, paths and implementation details
3. Key technical decisions and their rationale
4. Progress so far and next steps

MESSAGES:
{body}"""


def create_memory_refresh_message(token_count: int, token_limit: int) -> ConversationMessage:
    """Notice that the conversation is being reorganized at ``token_count``."""
    percent = round(token_count / token_limit * 100) if token_limit > 0 else 100
    return ConversationMessage(
        Role.ASSISTANT,
        (
            TextPart(
                f"Our conversation has reached {percent}% of capacity ({token_count:,} tokens). "
                "I'll organize what we've covered so far to keep the important context."
            ),
        ),
    )


__all__ = [
    "MEMORY_SYSTEM_PROMPT",
    "LONG_MESSAGE_SYSTEM_PROMPT",
    "GENERIC_MEMORY_PLACEHOLDER",
    "looks_like_task",
    "extract_current_task",
    "brief_summary",
    "create_decision_prompt",
    "create_long_message_prompt",
    "create_memory_structure_prompt",
    "create_range_summary_prompt",
    "create_memory_refresh_message",
]
