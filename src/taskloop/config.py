"""Configuration management for taskloop projects.

Parses taskloop.toml files with support for:
- Project metadata
- Context budget, thresholds and compaction algorithm
- LLM provider configuration
- Extra tool vocabulary for the parser
- Session defaults

Example taskloop.toml structure:

    name = "my-assistant"

    [context]
    max_tokens = 128000
    base_threshold = 0.6
    algorithm = "decision"

    [llm.deepseek]
    api_key = "${DEEPSEEK_API_KEY}"
    api_base = "https://api.deepseek.com/v1"
    model = "deepseek-chat"

    [protocol.tools.run_tests]
    params = ["path", "pattern"]
    large_payload = []

    [session]
    provider = "deepseek"
    max_turns = 20
"""

from __future__ import annotations

import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

if sys.version_info >= (3, 11):
    import tomllib as toml
else:
    import tomli as toml

from .context.analyzer import AnalyzerConfig
from .context.compactor import CompactionConfig
from .context.estimator import TokenEstimator
from .protocol.vocabulary import (
    ToolDescriptor,
    ToolParameter,
    ToolRegistry,
    create_default_registry,
)

CONFIG_FILENAME = "taskloop.toml"


def _load_env_file(env_path: Path) -> None:
    """Load environment variables from .env file (existing values win)."""
    try:
        with open(env_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue

                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                if value and value[0] in ('"', "'") and value[-1] == value[0]:
                    value = value[1:-1]

                if key and key not in os.environ:
                    os.environ[key] = value
    except OSError as e:
        logging.warning("[taskloop.config] Failed to load %s: %s", env_path, e)


def _expand_env_vars(value: Any) -> Any:
    """Recursively expand ${VAR} and $VAR environment variable references."""
    if isinstance(value, str):

        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        pattern = r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)"
        return re.sub(pattern, replace_var, value)
    elif isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    else:
        return value


@dataclass
class ContextConfig:
    """Context budget and compaction settings ([context])."""

    max_tokens: int = 128000
    base_threshold: float = 0.6
    emergency_threshold: float = 0.8
    aggressive_margin: float = 0.15
    growth_threshold: float = 0.15
    hard_token_limit: int = 60000
    correction_factor: float = 1.8
    algorithm: str = "decision"
    fallback_keep_recent: int = 10
    long_message_chars: int = 1000
    non_destructive: bool = False

    def estimator(self) -> TokenEstimator:
        return TokenEstimator(correction_factor=self.correction_factor)

    def analyzer_config(self) -> AnalyzerConfig:
        return AnalyzerConfig(
            max_tokens=self.max_tokens,
            base_threshold=self.base_threshold,
            emergency_threshold=self.emergency_threshold,
            aggressive_margin=self.aggressive_margin,
            growth_threshold=self.growth_threshold,
            hard_token_limit=self.hard_token_limit,
        )

    def compaction_config(self) -> CompactionConfig:
        return CompactionConfig(
            algorithm=self.algorithm,
            fallback_keep_recent=self.fallback_keep_recent,
            long_message_chars=self.long_message_chars,
            non_destructive=self.non_destructive,
        )


@dataclass
class LLMProviderConfig:
    """LLM provider configuration ([llm.<name>])."""

    name: str  # e.g., "deepseek", "openai", "local"
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    model: Optional[str] = None
    max_tokens: int = 2048
    temperature: float = 0.7
    timeout_sec: int = 30
    context_window: int = 128000


@dataclass
class ProtocolToolConfig:
    """Extra tool known to the parser ([protocol.tools.<name>])."""

    name: str
    params: list[str] = field(default_factory=list)
    large_payload: list[str] = field(default_factory=list)
    description: str = ""

    def to_descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description or f"Execute {self.name}",
            parameters=[
                ToolParameter(
                    name=param,
                    type="string",
                    description=param,
                    large_payload=param in self.large_payload,
                )
                for param in self.params
            ],
        )


@dataclass
class SessionConfig:
    """Session defaults ([session])."""

    provider: str = "local"
    max_turns: int = 10
    system_prompt: Optional[str] = None


@dataclass
class ProjectConfig:
    """Complete taskloop project configuration."""

    # Project metadata
    name: Optional[str] = None
    version: str = "0.1.0"
    description: Optional[str] = None

    context: ContextConfig = field(default_factory=ContextConfig)
    session: SessionConfig = field(default_factory=SessionConfig)

    # LLM providers (key = provider name, value = config)
    llm_providers: dict[str, LLMProviderConfig] = field(default_factory=dict)

    # Extra parser vocabulary (key = tool name)
    protocol_tools: dict[str, ProtocolToolConfig] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path = Path(CONFIG_FILENAME)) -> ProjectConfig:
        """Load configuration from a taskloop.toml file.

        Loads the nearest .env file (next to the config or in a parent
        directory) first, then expands ${VAR} references in the config.

        Raises:
            RuntimeError: If the file is not valid TOML
        """
        if not path.exists():
            return cls()

        current = path.resolve().parent
        while True:
            env_path = current / ".env"
            if env_path.exists():
                _load_env_file(env_path)
                break
            if current == current.parent:
                break
            current = current.parent

        try:
            raw_data = toml.loads(path.read_text(encoding="utf-8"))
        except (toml.TOMLDecodeError, OSError, UnicodeDecodeError) as e:
            raise RuntimeError(f"Failed to parse {path}: {e}") from e
        return cls.from_dict(_expand_env_vars(raw_data))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectConfig:
        config = cls()

        config.name = data.get("name")
        config.version = data.get("version", "0.1.0")
        config.description = data.get("description")

        if "context" in data:
            config.context = _section(ContextConfig, data["context"], "context")

        if "session" in data:
            config.session = _section(SessionConfig, data["session"], "session")

        for provider_name, provider_data in data.get("llm", {}).items():
            if not isinstance(provider_data, dict):
                logging.warning("[taskloop.config] Ignoring non-table [llm.%s]", provider_name)
                continue
            config.llm_providers[provider_name] = _section(
                LLMProviderConfig, {**provider_data, "name": provider_name}, f"llm.{provider_name}"
            )

        for tool_name, tool_data in data.get("protocol", {}).get("tools", {}).items():
            if not isinstance(tool_data, dict):
                logging.warning(
                    "[taskloop.config] Ignoring non-table [protocol.tools.%s]", tool_name
                )
                continue
            config.protocol_tools[tool_name] = _section(
                ProtocolToolConfig, {**tool_data, "name": tool_name}, f"protocol.tools.{tool_name}"
            )

        return config

    def tool_registry(self) -> ToolRegistry:
        """Default vocabulary extended with [protocol.tools.*] entries."""
        registry = create_default_registry()
        for tool_config in self.protocol_tools.values():
            registry.register(tool_config.to_descriptor())
        return registry


def _section(cls: type, data: dict[str, Any], label: str):
    """Build a section dataclass, warning about unknown keys."""
    known = set(cls.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        logging.warning("[taskloop.config] Unknown keys in [%s]: %s", label, ", ".join(unknown))
    return cls(**{k: v for k, v in data.items() if k in known})


def load_project_config(start_dir: Path = Path(".")) -> ProjectConfig:
    """Load project configuration, searching up from start_dir."""
    current = start_dir.resolve()
    while True:
        config_path = current / CONFIG_FILENAME
        if config_path.exists():
            return ProjectConfig.load(config_path)
        if current == current.parent:
            break
        current = current.parent

    # No config found, return defaults
    return ProjectConfig()


__all__ = [
    "CONFIG_FILENAME",
    "ContextConfig",
    "LLMProviderConfig",
    "ProtocolToolConfig",
    "SessionConfig",
    "ProjectConfig",
    "load_project_config",
]
