"""Token Estimator - Approximate token cost of conversation messages.

Sub-word tokenizers split on whitespace and punctuation, so text is costed
as word count plus half the punctuation count. Tool calls and results are
costed by serialized length. The total gets a flat role overhead and a
correction factor for the systematic undercount against real tokenizers.
"""

from __future__ import annotations

import json
import math
import re
from typing import Iterable

from ..protocol.types import (
    ConversationMessage,
    TextPart,
    ToolInvocationRecord,
    ToolResultPart,
)

_PUNCTUATION = re.compile(r"[.,!?;:()\[\]{}'\"]")


class TokenEstimator:
    """Deterministic, monotonic cost estimate for messages.

    Example:
        estimator = TokenEstimator()
        cost = estimator.estimate(ConversationMessage.user("Fix the bug."))
    """

    def __init__(
        self,
        correction_factor: float = 1.8,
        role_overhead: int = 4,
        tool_use_overhead: int = 20,
        tool_result_overhead: int = 10,
        unknown_overhead: int = 10,
        chars_per_token: int = 4,
    ):
        """Initialize estimator.

        Args:
            correction_factor: Multiplier applied to the raw total (>= 1)
            role_overhead: Flat cost added per message
            tool_use_overhead: Fixed cost of a tool invocation record
            tool_result_overhead: Fixed cost of a tool result
            unknown_overhead: Cost of a content part of unknown kind
            chars_per_token: Characters per token for serialized payloads
        """
        self.correction_factor = correction_factor
        self.role_overhead = role_overhead
        self.tool_use_overhead = tool_use_overhead
        self.tool_result_overhead = tool_result_overhead
        self.unknown_overhead = unknown_overhead
        self.chars_per_token = chars_per_token

    def estimate_text(self, text: str) -> float:
        words = len(text.split())
        punctuation = len(_PUNCTUATION.findall(text))
        return words + math.ceil(punctuation * 0.5)

    def estimate_part(self, part: object) -> float:
        if isinstance(part, TextPart):
            return self.estimate_text(part.text)
        if isinstance(part, ToolInvocationRecord):
            arguments = json.dumps(dict(part.arguments), default=str)
            return self.tool_use_overhead + len(arguments) / self.chars_per_token
        if isinstance(part, ToolResultPart):
            return self.tool_result_overhead + len(part.payload) / self.chars_per_token
        return self.unknown_overhead

    def estimate(self, message: ConversationMessage) -> int:
        """Estimated token cost of one message."""
        raw = sum(self.estimate_part(part) for part in message.content)
        raw += self.role_overhead
        return math.ceil(raw * self.correction_factor)

    def estimate_many(self, messages: Iterable[ConversationMessage]) -> int:
        return sum(self.estimate(message) for message in messages)


__all__ = ["TokenEstimator"]
