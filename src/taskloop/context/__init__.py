"""Context management: cost estimation, compaction decisions and history rewriting.

- **estimator.py**: TokenEstimator, approximate token cost per message
- **analyzer.py**: ContextAnalyzer, whether and how hard to compact
- **compactor.py**: HistoryCompactor, model-written memory replacing old messages
- **prompts.py**: Prompt templates and current-task extraction
"""

from .analyzer import AnalyzerConfig, CompactionStrategy, ContextAnalysis, ContextAnalyzer
from .compactor import (
    CompactionConfig,
    CompactionResult,
    DeletedRange,
    HistoryCompactor,
    MemoryDecision,
    MemoryDecisionError,
    TextGenerator,
    keep_recent_decision,
    parse_memory_decision,
)
from .estimator import TokenEstimator
from .prompts import create_memory_refresh_message, extract_current_task

__all__ = [
    # Estimation & analysis
    "TokenEstimator",
    "CompactionStrategy",
    "AnalyzerConfig",
    "ContextAnalysis",
    "ContextAnalyzer",
    # Compaction
    "DeletedRange",
    "MemoryDecision",
    "MemoryDecisionError",
    "CompactionConfig",
    "CompactionResult",
    "HistoryCompactor",
    "TextGenerator",
    "parse_memory_decision",
    "keep_recent_decision",
    # Prompts
    "extract_current_task",
    "create_memory_refresh_message",
]
