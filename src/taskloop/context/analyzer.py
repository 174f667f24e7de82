"""Context Analyzer - Decide when and how hard to compact history.

Compaction triggers:
1. Total cost above an absolute hard limit (independent of the budget)
2. First compaction: utilization >= base threshold
3. Later compactions: growth since the last compaction >= growth threshold
   while utilization >= base threshold, or utilization >= emergency threshold

The second tier stops repeated compaction of small increments while still
letting a fast-growing conversation compact again.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Sequence

from ..protocol.types import ConversationMessage
from .estimator import TokenEstimator


class CompactionStrategy(IntEnum):
    """Compaction intensity, ordered by aggressiveness."""

    LIGHT = 1
    STANDARD = 2
    AGGRESSIVE = 3
    EMERGENCY = 4

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass
class AnalyzerConfig:
    """Thresholds for compaction decisions.

    Attributes:
        max_tokens: Default budget when analyze() is called without one
        base_threshold: Utilization that triggers the first compaction
        emergency_threshold: Utilization that always triggers compaction
        aggressive_margin: Aggressive strategy above base + margin
        growth_threshold: Growth (fraction of budget) needed to compact again
        hard_token_limit: Absolute cost that always triggers compaction. It
            ignores the ratio, so when it is below base_threshold x budget (as
            with the defaults: 60000 < 0.6 x 128000) it fires first and the
            first compaction runs with the LIGHT strategy
    """

    max_tokens: int = 128000
    base_threshold: float = 0.6
    emergency_threshold: float = 0.8
    aggressive_margin: float = 0.15
    growth_threshold: float = 0.15
    hard_token_limit: int = 60000


@dataclass
class ContextAnalysis:
    """Result of analyzing a history against a budget."""

    total_cost: int
    utilization_ratio: float
    needs_compaction: bool
    strategy: CompactionStrategy
    message_count: int = 0

    @property
    def utilization_percent(self) -> int:
        if math.isinf(self.utilization_ratio):
            return 100
        return round(self.utilization_ratio * 100)


class ContextAnalyzer:
    """Aggregates message costs and decides on compaction.

    analyze() has no side effects; the compaction history that the growth
    rule depends on only changes through record_compaction().
    """

    def __init__(
        self,
        config: Optional[AnalyzerConfig] = None,
        estimator: Optional[TokenEstimator] = None,
    ):
        self.config = config or AnalyzerConfig()
        self.estimator = estimator or TokenEstimator()
        self.compaction_count = 0
        self.last_compaction_cost = 0

    def analyze(
        self,
        history: Sequence[ConversationMessage],
        max_budget: Optional[int] = None,
    ) -> ContextAnalysis:
        """Estimate total cost of ``history`` and decide on compaction.

        Args:
            history: Conversation messages, oldest first
            max_budget: Token budget (defaults to config.max_tokens)

        Returns:
            ContextAnalysis with cost, ratio, decision and strategy
        """
        budget = self.config.max_tokens if max_budget is None else max_budget
        total = self.estimator.estimate_many(history)

        if budget <= 0:
            logging.warning("[taskloop.context] Non-positive budget %s, forcing compaction", budget)
            return ContextAnalysis(
                total_cost=total,
                utilization_ratio=math.inf,
                needs_compaction=True,
                strategy=CompactionStrategy.EMERGENCY,
                message_count=len(history),
            )

        ratio = total / budget
        needs = self._needs_compaction(total, ratio, budget)
        strategy = self.select_strategy(ratio)

        logging.info(
            "[taskloop.context] Analysis: %d%% used, %d/%d tokens, compactions=%d, last=%d, needs=%s",
            round(ratio * 100),
            total,
            budget,
            self.compaction_count,
            self.last_compaction_cost,
            needs,
        )

        return ContextAnalysis(
            total_cost=total,
            utilization_ratio=ratio,
            needs_compaction=needs,
            strategy=strategy,
            message_count=len(history),
        )

    def select_strategy(self, ratio: float) -> CompactionStrategy:
        cfg = self.config
        if ratio >= cfg.emergency_threshold:
            return CompactionStrategy.EMERGENCY
        if ratio >= cfg.base_threshold + cfg.aggressive_margin:
            return CompactionStrategy.AGGRESSIVE
        if ratio >= cfg.base_threshold:
            return CompactionStrategy.STANDARD
        return CompactionStrategy.LIGHT

    def record_compaction(self, cost_after: int) -> None:
        """Remember the cost of the history a compaction produced."""
        self.compaction_count += 1
        self.last_compaction_cost = cost_after

    def reset(self) -> None:
        self.compaction_count = 0
        self.last_compaction_cost = 0

    def _needs_compaction(self, total: int, ratio: float, budget: int) -> bool:
        cfg = self.config
        if total > cfg.hard_token_limit:
            return True
        if self.compaction_count == 0:
            return ratio >= cfg.base_threshold

        growth = (total - self.last_compaction_cost) / budget
        return (
            growth >= cfg.growth_threshold and ratio >= cfg.base_threshold
        ) or ratio >= cfg.emergency_threshold


__all__ = [
    "CompactionStrategy",
    "AnalyzerConfig",
    "ContextAnalysis",
    "ContextAnalyzer",
]
