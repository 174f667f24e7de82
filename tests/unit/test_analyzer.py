"""Tests for ContextAnalyzer."""

import math

import pytest

from taskloop.context import (
    AnalyzerConfig,
    CompactionStrategy,
    ContextAnalyzer,
    TokenEstimator,
)
from taskloop.protocol import ConversationMessage

# With correction_factor=2 a one-word message costs (1 + 4) * 2 = 10.
UNIT = 10


def one_word_history(n: int):
    return [ConversationMessage.user("word") for _ in range(n)]


def make_analyzer(**overrides) -> ContextAnalyzer:
    return ContextAnalyzer(AnalyzerConfig(**overrides), TokenEstimator(correction_factor=2))


class TestStrategySelection:
    """Strategy is a function of the utilization ratio."""

    @pytest.mark.parametrize(
        "ratio,expected",
        [
            (0.0, CompactionStrategy.LIGHT),
            (0.59, CompactionStrategy.LIGHT),
            (0.6, CompactionStrategy.STANDARD),
            (0.74, CompactionStrategy.STANDARD),
            (0.76, CompactionStrategy.AGGRESSIVE),
            (0.8, CompactionStrategy.EMERGENCY),
            (1.5, CompactionStrategy.EMERGENCY),
        ],
    )
    def test_thresholds(self, ratio, expected):
        assert ContextAnalyzer().select_strategy(ratio) is expected

    def test_strategies_are_ordered(self):
        assert (
            CompactionStrategy.LIGHT
            < CompactionStrategy.STANDARD
            < CompactionStrategy.AGGRESSIVE
            < CompactionStrategy.EMERGENCY
        )
        assert CompactionStrategy.AGGRESSIVE.label == "aggressive"


class TestFirstCompaction:
    """Before any compaction the base threshold decides."""

    def test_below_base_threshold(self):
        analysis = make_analyzer().analyze(one_word_history(5), max_budget=100)

        assert analysis.total_cost == 50
        assert analysis.utilization_ratio == 0.5
        assert analysis.needs_compaction is False
        assert analysis.strategy is CompactionStrategy.LIGHT
        assert analysis.message_count == 5

    def test_exactly_at_base_threshold(self):
        analysis = make_analyzer().analyze(one_word_history(6), max_budget=100)

        assert analysis.total_cost == 60
        assert analysis.needs_compaction is True
        assert analysis.strategy is CompactionStrategy.STANDARD

    def test_budget_defaults_to_config(self):
        analysis = make_analyzer(max_tokens=200).analyze(one_word_history(6))

        assert analysis.utilization_ratio == 0.3
        assert analysis.needs_compaction is False

    def test_analyze_has_no_side_effects(self):
        analyzer = make_analyzer()
        history = one_word_history(9)

        first = analyzer.analyze(history, 100)
        second = analyzer.analyze(history, 100)

        assert first == second
        assert analyzer.compaction_count == 0


class TestRepeatedCompaction:
    """After a compaction, growth or the emergency threshold decides."""

    def test_recompacting_unchanged_output_is_not_needed(self):
        """History at the base threshold compacts once, not again without growth."""
        analyzer = make_analyzer()
        history = one_word_history(6)

        first = analyzer.analyze(history, 100)
        assert first.needs_compaction is True
        assert first.strategy is CompactionStrategy.STANDARD

        analyzer.record_compaction(first.total_cost)
        again = analyzer.analyze(history, 100)

        assert again.needs_compaction is False

    def test_small_growth_does_not_trigger(self):
        analyzer = make_analyzer()
        analyzer.record_compaction(6 * UNIT)

        # 70% used, grew by 10% of budget
        assert analyzer.analyze(one_word_history(7), 100).needs_compaction is False

    def test_growth_above_threshold_triggers(self):
        analyzer = make_analyzer()
        analyzer.record_compaction(5 * UNIT)

        # 70% used, grew by 20% of budget
        assert analyzer.analyze(one_word_history(7), 100).needs_compaction is True

    def test_growth_below_base_threshold_does_not_trigger(self):
        analyzer = make_analyzer()
        analyzer.record_compaction(1 * UNIT)

        # 50% used, grew by 40% of budget
        assert analyzer.analyze(one_word_history(5), 100).needs_compaction is False

    def test_emergency_threshold_triggers_without_growth(self):
        analyzer = make_analyzer()
        analyzer.record_compaction(8 * UNIT)

        analysis = analyzer.analyze(one_word_history(8), 100)

        assert analysis.needs_compaction is True
        assert analysis.strategy is CompactionStrategy.EMERGENCY

    def test_reset(self):
        analyzer = make_analyzer()
        analyzer.record_compaction(42)
        analyzer.reset()

        assert analyzer.compaction_count == 0
        assert analyzer.last_compaction_cost == 0


class TestSafetyLimits:
    """Hard limit and misconfigured budgets."""

    def test_hard_limit_forces_compaction(self):
        analyzer = make_analyzer(hard_token_limit=30)

        analysis = analyzer.analyze(one_word_history(4), max_budget=1000)

        assert analysis.utilization_ratio == 0.04
        assert analysis.needs_compaction is True

    def test_hard_limit_applies_after_compaction(self):
        analyzer = make_analyzer(hard_token_limit=30)
        analyzer.record_compaction(40)

        assert analyzer.analyze(one_word_history(4), 1000).needs_compaction is True

    @pytest.mark.parametrize("budget", [0, -100])
    def test_non_positive_budget(self, budget):
        analysis = make_analyzer().analyze(one_word_history(2), max_budget=budget)

        assert math.isinf(analysis.utilization_ratio)
        assert analysis.utilization_percent == 100
        assert analysis.needs_compaction is True
        assert analysis.strategy is CompactionStrategy.EMERGENCY

    def test_empty_history(self):
        analysis = make_analyzer().analyze([], 100)

        assert analysis.total_cost == 0
        assert analysis.needs_compaction is False


class TestMonotonicThresholds:
    """Below base never compacts, above emergency always does."""

    @pytest.mark.parametrize("budget", [50, 100, 1000, 5000])
    def test_across_budgets(self, budget):
        for compactions in (0, 1):
            analyzer = make_analyzer()
            if compactions:
                analyzer.record_compaction(budget // 2)

            low = one_word_history(int(budget * 0.5) // UNIT)
            high = one_word_history(int(budget * 0.9) // UNIT + 1)

            assert analyzer.analyze(low, budget).needs_compaction is False
            assert analyzer.analyze(high, budget).needs_compaction is True


class TestHardLimitAtDefaultBudget:
    """The absolute hard limit takes precedence over the ratio thresholds."""

    def test_hard_limit_fires_below_base_threshold(self):
        analyzer = make_analyzer()

        below = analyzer.analyze(one_word_history(5999))
        above = analyzer.analyze(one_word_history(6001))

        assert below.needs_compaction is False
        assert above.utilization_ratio < 0.6
        assert above.needs_compaction is True
        assert above.strategy is CompactionStrategy.LIGHT

    def test_ratio_thresholds_hold_when_limit_covers_budget(self):
        analyzer = make_analyzer(hard_token_limit=128000)

        low = one_word_history(int(128000 * 0.5) // UNIT)
        high = one_word_history(int(128000 * 0.9) // UNIT)

        assert analyzer.analyze(low).needs_compaction is False
        assert analyzer.analyze(high).needs_compaction is True
