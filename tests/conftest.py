"""Test fixtures and configuration for taskloop tests.

Test Structure:
    tests/
    ├── conftest.py          # Shared fixtures
    └── unit/                # Unit tests (no network, LLM calls are mocked)
        ├── test_analyzer.py
        ├── test_cli.py
        ├── test_compactor.py
        ├── test_config.py
        ├── test_estimator.py
        ├── test_lexer.py
        ├── test_llm_provider.py
        ├── test_parser.py
        ├── test_prompts.py
        ├── test_session.py
        ├── test_telemetry.py
        ├── test_tools.py
        └── test_vocabulary.py

Running tests:
    pytest tests/unit -v
"""

from typing import Callable, List

import pytest

from taskloop.protocol import ConversationMessage, StreamParser, create_default_registry


class ScriptedGenerator:
    """Stand-in for LLMProvider.generate that replays canned replies.

    Each call pops the next reply. A reply that is an exception instance is
    raised instead of returned. Calls are recorded as (prompt, system).
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    async def __call__(self, prompt: str, *, system: str = None) -> str:
        self.calls.append((prompt, system))
        if not self.replies:
            raise AssertionError("Unexpected generation call")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def scripted():
    """Factory for ScriptedGenerator: ``scripted("reply 1", RuntimeError(), ...)``."""
    return ScriptedGenerator


@pytest.fixture
def registry():
    """Default coding-assistant vocabulary."""
    return create_default_registry()


@pytest.fixture
def parser(registry) -> StreamParser:
    return StreamParser(registry)


@pytest.fixture
def make_history() -> Callable[..., List[ConversationMessage]]:
    """Build an alternating user/assistant history of ``n`` messages."""

    def _make(n: int, words: int = 5, first: str = "Please fix the login bug") -> list:
        history = [ConversationMessage.user(first)]
        for i in range(1, n):
            text = " ".join(f"word{i}" for _ in range(words))
            if i % 2:
                history.append(ConversationMessage.assistant(text))
            else:
                history.append(ConversationMessage.user(text))
        return history

    return _make
