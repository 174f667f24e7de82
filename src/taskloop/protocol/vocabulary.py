"""Tool vocabulary - Tool and parameter names understood by the parser.

The tag protocol is closed: only tool names and parameter names registered
here are recognised as tags. Everything else in the model's output is plain
text. The registry also renders the tool section of the system prompt, so
the model is told about exactly the vocabulary the parser accepts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ToolParameter:
    """Describes a tool parameter.

    ``large_payload`` marks parameters whose value is arbitrary text (file
    content, diffs) that may itself contain the parameter's closing tag.
    """

    name: str
    type: str  # "string", "number", "boolean"
    description: str
    required: bool = False
    default: Optional[Any] = None
    examples: list[Any] = field(default_factory=list)
    large_payload: bool = False

    def to_string(self) -> str:
        """Format parameter for system prompt."""
        parts = [f"{self.name}: {self.type}"]
        if self.required:
            parts[0] += " (required)"
        if self.description:
            parts.append(f"- {self.description}")
        if self.default is not None:
            parts.append(f"- default: {self.default}")
        if self.examples:
            examples_str = ", ".join(str(ex) for ex in self.examples[:2])
            parts.append(f"- e.g. {examples_str}")
        return " ".join(parts)


@dataclass
class ToolDescriptor:
    """Complete tool description with parameters and usage examples."""

    name: str
    description: str
    parameters: list[ToolParameter] = field(default_factory=list)
    examples: list[str] = field(default_factory=list)
    category: Optional[str] = None  # "filesystem", "shell", "interaction", ...

    def get_signature(self) -> str:
        """Get tool signature: name(param1, param2?, ...)"""
        if not self.parameters:
            return f"{self.name}()"

        param_names = []
        for param in self.parameters:
            if param.required:
                param_names.append(param.name)
            else:
                param_names.append(f"{param.name}?")

        return f"{self.name}({', '.join(param_names)})"

    def to_usage(self) -> str:
        """Tag-protocol usage block for this tool."""
        lines = [f"<{self.name}>"]
        for param in self.parameters:
            lines.append(f"<{param.name}>{param.description}</{param.name}>")
        lines.append(f"</{self.name}>")
        return "\n".join(lines)

    def to_compact_string(self) -> str:
        """Format as single-line compact description."""
        sig = self.get_signature()
        return f"{sig} - {self.description}"

    def to_detailed_string(self) -> str:
        """Format as multi-line detailed description."""
        lines = [
            f"## {self.name}",
            f"Description: {self.description}",
        ]

        if self.parameters:
            lines.append("Parameters:")
            for param in self.parameters:
                lines.append(f"  - {param.to_string()}")

        lines.append("Usage:")
        lines.append(self.to_usage())

        if self.examples:
            lines.append("Examples:")
            for example in self.examples[:2]:
                lines.append(example)

        return "\n".join(lines)

    def get_parameter(self, name: str) -> Optional[ToolParameter]:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    @staticmethod
    def from_simple_name(name: str, description: str = "") -> ToolDescriptor:
        """Create minimal descriptor from just a name."""
        return ToolDescriptor(
            name=name,
            description=description or f"Execute {name}",
        )


class ToolRegistry:
    """Registry of tool descriptors: the parser's tag vocabulary."""

    def __init__(self):
        self._tools: dict[str, ToolDescriptor] = {}
        self._categories: dict[str, list[str]] = {}  # category -> tool names

    def register(self, descriptor: ToolDescriptor) -> None:
        """Register (or replace) a tool descriptor."""
        if descriptor.name in self._tools:
            self.unregister(descriptor.name)
        self._tools[descriptor.name] = descriptor

        if descriptor.category:
            if descriptor.category not in self._categories:
                self._categories[descriptor.category] = []
            self._categories[descriptor.category].append(descriptor.name)

    def register_simple(self, name: str, description: str = "") -> None:
        """Register a simple tool with just name and description."""
        descriptor = ToolDescriptor.from_simple_name(name, description)
        self.register(descriptor)

    def unregister(self, name: str) -> None:
        descriptor = self._tools.pop(name, None)
        if descriptor and descriptor.category:
            self._categories[descriptor.category].remove(name)

    def get(self, name: str) -> Optional[ToolDescriptor]:
        """Get descriptor by name."""
        return self._tools.get(name)

    def get_all(self) -> list[ToolDescriptor]:
        """Get all registered descriptors."""
        return list(self._tools.values())

    def get_by_category(self, category: str) -> list[ToolDescriptor]:
        """Get all tools in a category."""
        tool_names = self._categories.get(category, [])
        return [self._tools[name] for name in tool_names if name in self._tools]

    def tool_names(self) -> list[str]:
        return list(self._tools)

    def param_names(self) -> list[str]:
        """All parameter names across tools, first-seen order, no duplicates."""
        names: dict[str, None] = {}
        for descriptor in self._tools.values():
            for param in descriptor.parameters:
                names.setdefault(param.name, None)
        return list(names)

    def large_payload_params(self) -> frozenset[tuple[str, str]]:
        """(tool, param) pairs whose closing tag is searched by last occurrence."""
        return frozenset(
            (descriptor.name, param.name)
            for descriptor in self._tools.values()
            for param in descriptor.parameters
            if param.large_payload
        )

    def format_for_prompt(
        self,
        tool_names: Optional[list[str]] = None,
        detailed: bool = True,
        group_by_category: bool = False,
    ) -> str:
        """Format tools for system prompt.

        Args:
            tool_names: Specific tools to include (None = all)
            detailed: Use detailed format (with tag usage) vs compact
            group_by_category: Group tools by category (compact format only)

        Returns:
            Formatted string for system prompt
        """
        if tool_names is None:
            descriptors = self.get_all()
        else:
            descriptors = [
                self._tools.get(name) or ToolDescriptor.from_simple_name(name)
                for name in tool_names
            ]

        if not descriptors:
            return "No tools available."

        if group_by_category and not detailed:
            categories: dict[str, list[ToolDescriptor]] = {}
            for desc in descriptors:
                cat = desc.category or "general"
                categories.setdefault(cat, []).append(desc)

            lines = []
            for cat, tools in sorted(categories.items()):
                lines.append(f"{cat.upper()}:")
                for tool in tools:
                    lines.append(f"  - {tool.to_compact_string()}")
            return "\n".join(lines)

        if detailed:
            return "\n\n".join(desc.to_detailed_string() for desc in descriptors)
        return "\n".join(f"- {desc.to_compact_string()}" for desc in descriptors)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def create_default_registry() -> ToolRegistry:
    """Create a registry with the coding-assistant tool vocabulary."""
    registry = ToolRegistry()

    path = ToolParameter(
        "path", "string", "Path relative to the working directory", required=True
    )

    # Filesystem tools
    registry.register(
        ToolDescriptor(
            name="read_file",
            description="Read the contents of a file",
            category="filesystem",
            parameters=[path],
            examples=["<read_file>\n<path>src/main.py</path>\n</read_file>"],
        )
    )
    registry.register(
        ToolDescriptor(
            name="write_to_file",
            description="Create a new file or completely overwrite an existing one",
            category="filesystem",
            parameters=[
                path,
                ToolParameter(
                    "content", "string", "Full file content", required=True, large_payload=True
                ),
            ],
        )
    )
    registry.register(
        ToolDescriptor(
            name="replace_in_file",
            description="Make targeted edits to specific parts of an existing file",
            category="filesystem",
            parameters=[
                path,
                ToolParameter(
                    "diff", "string", "SEARCH/REPLACE blocks", required=True, large_payload=True
                ),
            ],
        )
    )
    registry.register(
        ToolDescriptor(
            name="search_files",
            description="Regex search across files in a directory",
            category="filesystem",
            parameters=[
                path,
                ToolParameter("regex", "string", "Regex pattern", required=True),
                ToolParameter(
                    "file_pattern", "string", "Glob to filter files", examples=["*.ts"]
                ),
            ],
        )
    )
    registry.register(
        ToolDescriptor(
            name="list_files",
            description="List files in a directory",
            category="filesystem",
            parameters=[
                path,
                ToolParameter("recursive", "boolean", "List recursively", default=False),
            ],
        )
    )
    registry.register(
        ToolDescriptor(
            name="list_code_definition_names",
            description="List top-level definitions in source files of a directory",
            category="filesystem",
            parameters=[path],
        )
    )

    # Shell tools
    registry.register(
        ToolDescriptor(
            name="execute_command",
            description="Execute a CLI command",
            category="shell",
            parameters=[
                ToolParameter("command", "string", "CLI command", required=True),
                ToolParameter(
                    "requires_approval",
                    "boolean",
                    "Whether the command needs explicit user approval",
                    required=True,
                ),
            ],
            examples=[
                "<execute_command>\n<command>npm test</command>\n"
                "<requires_approval>false</requires_approval>\n</execute_command>"
            ],
        )
    )

    # Browser tools
    registry.register(
        ToolDescriptor(
            name="browser_action",
            description="Drive a headless browser",
            category="browser",
            parameters=[
                ToolParameter(
                    "action",
                    "string",
                    "launch/click/type/scroll_down/scroll_up/close",
                    required=True,
                ),
                ToolParameter("url", "string", "URL for launch"),
                ToolParameter("coordinate", "string", "x,y for click"),
                ToolParameter("text", "string", "Text for type"),
            ],
        )
    )

    # MCP tools
    registry.register(
        ToolDescriptor(
            name="use_mcp_tool",
            description="Call a tool on a connected MCP server",
            category="mcp",
            parameters=[
                ToolParameter("server_name", "string", "MCP server name", required=True),
                ToolParameter("tool_name", "string", "Tool name", required=True),
                ToolParameter("arguments", "string", "JSON arguments", required=True),
            ],
        )
    )
    registry.register(
        ToolDescriptor(
            name="access_mcp_resource",
            description="Read a resource from a connected MCP server",
            category="mcp",
            parameters=[
                ToolParameter("server_name", "string", "MCP server name", required=True),
                ToolParameter("uri", "string", "Resource URI", required=True),
            ],
        )
    )

    # Interaction tools
    registry.register(
        ToolDescriptor(
            name="ask_followup_question",
            description="Ask the user a clarifying question",
            category="interaction",
            parameters=[ToolParameter("question", "string", "Question to ask", required=True)],
        )
    )
    registry.register(
        ToolDescriptor(
            name="plan_mode_response",
            description="Respond to the user while planning",
            category="interaction",
            parameters=[ToolParameter("response", "string", "Your response", required=True)],
        )
    )
    registry.register(
        ToolDescriptor(
            name="attempt_completion",
            description="Present the final result of the task",
            category="interaction",
            parameters=[
                ToolParameter("result", "string", "Final result description", required=True),
                ToolParameter("command", "string", "Command that demonstrates the result"),
            ],
        )
    )

    return registry


__all__ = [
    "ToolParameter",
    "ToolDescriptor",
    "ToolRegistry",
    "create_default_registry",
]
