"""Tests for configuration management."""

import logging
from pathlib import Path

import pytest

from taskloop.config import (
    CONFIG_FILENAME,
    ContextConfig,
    LLMProviderConfig,
    ProjectConfig,
    ProtocolToolConfig,
    load_project_config,
)
from taskloop.context import CompactionStrategy

FULL_CONFIG = """
name = "my-assistant"
version = "1.2.0"

[context]
max_tokens = 64000
base_threshold = 0.5
algorithm = "range"
non_destructive = true
correction_factor = 1.5

[llm.deepseek]
api_key = "${TASKLOOP_TEST_KEY}"
api_base = "https://api.deepseek.com/v1"
model = "deepseek-chat"
timeout_sec = 45

[protocol.tools.run_tests]
params = ["pattern", "script"]
large_payload = ["script"]
description = "Run the test suite"

[session]
provider = "deepseek"
max_turns = 20
"""


def write_config(directory: Path, text: str) -> Path:
    path = directory / CONFIG_FILENAME
    path.write_text(text, encoding="utf-8")
    return path


def test_project_config_defaults():
    """Test ProjectConfig defaults."""
    config = ProjectConfig()

    assert config.version == "0.1.0"
    assert config.context.max_tokens == 128000
    assert config.context.algorithm == "decision"
    assert config.session.provider == "local"
    assert config.llm_providers == {}


def test_llm_provider_config():
    config = LLMProviderConfig(name="deepseek", api_key="test-key", model="deepseek-chat")

    assert config.name == "deepseek"
    assert config.max_tokens == 2048
    assert config.timeout_sec == 30


def test_load_full_config(tmp_path, monkeypatch):
    """All sections are parsed and ${VAR} references expanded."""
    monkeypatch.setenv("TASKLOOP_TEST_KEY", "sk-expanded")
    path = write_config(tmp_path, FULL_CONFIG)

    config = ProjectConfig.load(path)

    assert config.name == "my-assistant"
    assert config.version == "1.2.0"
    assert config.context.max_tokens == 64000
    assert config.context.base_threshold == 0.5
    assert config.context.non_destructive is True
    assert config.llm_providers["deepseek"].api_key == "sk-expanded"
    assert config.llm_providers["deepseek"].timeout_sec == 45
    assert config.protocol_tools["run_tests"].large_payload == ["script"]
    assert config.session.max_turns == 20


def test_env_file_loaded(tmp_path, monkeypatch):
    """The nearest .env supplies variables that are not already set."""
    monkeypatch.delenv("TASKLOOP_TEST_KEY", raising=False)
    (tmp_path / ".env").write_text('# secrets\nTASKLOOP_TEST_KEY="from-dotenv"\n')
    project = tmp_path / "project"
    project.mkdir()
    path = write_config(project, FULL_CONFIG)

    config = ProjectConfig.load(path)

    assert config.llm_providers["deepseek"].api_key == "from-dotenv"


def test_existing_env_wins_over_env_file(tmp_path, monkeypatch):
    monkeypatch.setenv("TASKLOOP_TEST_KEY", "from-shell")
    (tmp_path / ".env").write_text("TASKLOOP_TEST_KEY=from-dotenv\n")
    path = write_config(tmp_path, FULL_CONFIG)

    assert ProjectConfig.load(path).llm_providers["deepseek"].api_key == "from-shell"


def test_unset_variable_left_as_is(tmp_path, monkeypatch):
    monkeypatch.delenv("TASKLOOP_MISSING", raising=False)
    path = write_config(tmp_path, '[llm.x]\napi_key = "${TASKLOOP_MISSING}"\n')

    assert ProjectConfig.load(path).llm_providers["x"].api_key == "${TASKLOOP_MISSING}"


def test_missing_file_gives_defaults(tmp_path):
    config = ProjectConfig.load(tmp_path / CONFIG_FILENAME)
    assert config == ProjectConfig()


def test_invalid_toml_raises(tmp_path):
    path = write_config(tmp_path, "[context\nmax_tokens = ")

    with pytest.raises(RuntimeError, match="Failed to parse"):
        ProjectConfig.load(path)


def test_unknown_keys_warned(caplog):
    with caplog.at_level(logging.WARNING):
        config = ProjectConfig.from_dict({"context": {"max_tokens": 1000, "max_tokenz": 5}})

    assert config.context.max_tokens == 1000
    assert "max_tokenz" in caplog.text


def test_non_table_sections_ignored():
    config = ProjectConfig.from_dict({"llm": {"broken": "yes"}, "protocol": {"tools": {"t": 1}}})

    assert config.llm_providers == {}
    assert config.protocol_tools == {}


def test_unknown_algorithm_rejected():
    config = ProjectConfig.from_dict({"context": {"algorithm": "truncate"}})

    with pytest.raises(ValueError):
        config.context.compaction_config()


def test_context_config_builds_components():
    context = ContextConfig(
        max_tokens=1000, emergency_threshold=0.9, correction_factor=1.0, fallback_keep_recent=4
    )

    analyzer_config = context.analyzer_config()
    compaction_config = context.compaction_config()

    assert analyzer_config.max_tokens == 1000
    assert analyzer_config.emergency_threshold == 0.9
    assert context.estimator().correction_factor == 1.0
    assert compaction_config.fallback_keep_recent == 4
    assert compaction_config.range_fractions[CompactionStrategy.EMERGENCY] == 0.9


def test_tool_registry_extended():
    config = ProjectConfig()
    config.protocol_tools["run_tests"] = ProtocolToolConfig(
        name="run_tests", params=["pattern", "script"], large_payload=["script"]
    )

    registry = config.tool_registry()

    assert "run_tests" in registry
    assert "read_file" in registry
    assert ("run_tests", "script") in registry.large_payload_params()
    assert registry.get("run_tests").description == "Execute run_tests"


def test_load_project_config_searches_upward(tmp_path, monkeypatch):
    monkeypatch.setenv("TASKLOOP_TEST_KEY", "k")
    write_config(tmp_path, FULL_CONFIG)
    nested = tmp_path / "src" / "pkg"
    nested.mkdir(parents=True)

    config = load_project_config(nested)

    assert config.name == "my-assistant"
