"""Tests for the tool vocabulary (descriptors and registry)."""

from taskloop.protocol import (
    ToolDescriptor,
    ToolParameter,
    ToolRegistry,
    create_default_registry,
)


class TestToolParameter:
    """Test ToolParameter functionality."""

    def test_required_parameter(self):
        """Test required parameter formatting."""
        param = ToolParameter(
            name="path",
            type="string",
            description="File path",
            required=True,
        )

        result = param.to_string()
        assert "path: string (required)" in result
        assert "File path" in result

    def test_optional_with_default(self):
        """Test optional parameter with default value."""
        param = ToolParameter(
            name="recursive",
            type="boolean",
            description="List recursively",
            default=False,
        )

        result = param.to_string()
        assert "recursive: boolean" in result
        assert "(required)" not in result
        assert "default: False" in result

    def test_with_examples(self):
        """Test parameter with examples."""
        param = ToolParameter(
            name="file_pattern",
            type="string",
            description="Glob",
            examples=["*.ts", "*.py", "*.rs"],
        )

        assert "e.g. *.ts, *.py" in param.to_string()  # Only first 2 examples

    def test_not_large_payload_by_default(self):
        assert ToolParameter("path", "string", "File path").large_payload is False


class TestToolDescriptor:
    """Test ToolDescriptor functionality."""

    def test_simple_signature(self):
        """Test tool signature without parameters."""
        desc = ToolDescriptor(name="list_files", description="List files")
        assert desc.get_signature() == "list_files()"

    def test_signature_with_params(self):
        """Test signature with required and optional params."""
        desc = ToolDescriptor(
            name="search_files",
            description="Search",
            parameters=[
                ToolParameter("path", "string", "Directory", required=True),
                ToolParameter("regex", "string", "Pattern", required=True),
                ToolParameter("file_pattern", "string", "Glob"),
            ],
        )

        assert desc.get_signature() == "search_files(path, regex, file_pattern?)"

    def test_compact_string(self):
        """Test compact one-line format."""
        desc = ToolDescriptor(name="execute_command", description="Execute a CLI command")
        assert desc.to_compact_string() == "execute_command() - Execute a CLI command"

    def test_usage_block_uses_tag_protocol(self):
        """Usage shows the exact tags the parser recognises."""
        desc = ToolDescriptor(
            name="read_file",
            description="Read",
            parameters=[ToolParameter("path", "string", "File path", required=True)],
        )

        assert desc.to_usage() == "<read_file>\n<path>File path</path>\n</read_file>"

    def test_detailed_string(self):
        """Test detailed multi-line format."""
        desc = ToolDescriptor(
            name="write_to_file",
            description="Write to file",
            parameters=[
                ToolParameter("path", "string", "File path", required=True),
                ToolParameter("content", "string", "Content", required=True),
            ],
            examples=["<write_to_file>\n<path>a.txt</path>\n<content>hi</content>\n</write_to_file>"],
        )

        result = desc.to_detailed_string()
        assert "## write_to_file" in result
        assert "Description: Write to file" in result
        assert "Parameters:" in result
        assert "path: string (required)" in result
        assert "Usage:" in result
        assert "<content>Content</content>" in result
        assert "Examples:" in result

    def test_get_parameter(self):
        desc = ToolDescriptor(
            name="read_file",
            description="Read",
            parameters=[ToolParameter("path", "string", "File path")],
        )

        assert desc.get_parameter("path").name == "path"
        assert desc.get_parameter("missing") is None

    def test_from_simple_name(self):
        """Test creating minimal descriptor."""
        desc = ToolDescriptor.from_simple_name("run_tests")

        assert desc.name == "run_tests"
        assert desc.description == "Execute run_tests"
        assert len(desc.parameters) == 0


class TestToolRegistry:
    """Test ToolRegistry functionality."""

    def test_register_and_get(self):
        """Test basic registration and retrieval."""
        registry = ToolRegistry()
        registry.register(ToolDescriptor.from_simple_name("run_tests", "Run tests"))

        retrieved = registry.get("run_tests")
        assert retrieved is not None
        assert retrieved.description == "Run tests"
        assert "run_tests" in registry
        assert len(registry) == 1

    def test_register_replaces_existing(self):
        """Re-registering a name replaces the descriptor and its category entry."""
        registry = ToolRegistry()
        registry.register(ToolDescriptor("read_file", "Old", category="filesystem"))
        registry.register(ToolDescriptor("read_file", "New", category="filesystem"))

        assert registry.get("read_file").description == "New"
        assert len(registry.get_by_category("filesystem")) == 1

    def test_unregister(self):
        registry = ToolRegistry()
        registry.register(ToolDescriptor("read_file", "Read", category="filesystem"))
        registry.unregister("read_file")

        assert "read_file" not in registry
        assert registry.get_by_category("filesystem") == []

    def test_category_grouping(self):
        """Test categorization."""
        registry = ToolRegistry()
        registry.register(ToolDescriptor("read_file", "Read", category="filesystem"))
        registry.register(ToolDescriptor("list_files", "List", category="filesystem"))
        registry.register(ToolDescriptor("execute_command", "Run", category="shell"))

        fs_tools = registry.get_by_category("filesystem")
        assert len(fs_tools) == 2
        assert all(t.category == "filesystem" for t in fs_tools)

    def test_param_names_are_deduplicated(self):
        """Parameters shared between tools appear once, in first-seen order."""
        registry = ToolRegistry()
        registry.register(
            ToolDescriptor("read_file", "Read", parameters=[ToolParameter("path", "string", "")])
        )
        registry.register(
            ToolDescriptor(
                "write_to_file",
                "Write",
                parameters=[
                    ToolParameter("path", "string", ""),
                    ToolParameter("content", "string", "", large_payload=True),
                ],
            )
        )

        assert registry.tool_names() == ["read_file", "write_to_file"]
        assert registry.param_names() == ["path", "content"]
        assert registry.large_payload_params() == frozenset({("write_to_file", "content")})

    def test_format_compact(self):
        """Test compact formatting for prompt."""
        registry = ToolRegistry()
        registry.register_simple("tool1", "First tool")
        registry.register_simple("tool2", "Second tool")

        formatted = registry.format_for_prompt(detailed=False)
        assert "- tool1() - First tool" in formatted
        assert "- tool2() - Second tool" in formatted

    def test_format_with_categories(self):
        """Test formatting with category grouping."""
        registry = ToolRegistry()
        registry.register(ToolDescriptor("read_file", "Read", category="filesystem"))
        registry.register(ToolDescriptor("execute_command", "Run", category="shell"))

        formatted = registry.format_for_prompt(detailed=False, group_by_category=True)
        assert "FILESYSTEM:" in formatted
        assert "SHELL:" in formatted

    def test_format_specific_tools(self):
        """Test formatting only specific tools."""
        registry = ToolRegistry()
        registry.register_simple("tool1", "First")
        registry.register_simple("tool2", "Second")
        registry.register_simple("tool3", "Third")

        formatted = registry.format_for_prompt(tool_names=["tool1", "tool3", "unknown"])
        assert "tool1" in formatted
        assert "tool3" in formatted
        assert "Execute unknown" in formatted
        assert "tool2" not in formatted

    def test_format_empty_registry(self):
        assert ToolRegistry().format_for_prompt() == "No tools available."

    def test_default_registry(self):
        """Default vocabulary covers the coding-assistant tools."""
        registry = create_default_registry()

        for name in (
            "read_file",
            "write_to_file",
            "replace_in_file",
            "search_files",
            "list_files",
            "execute_command",
            "ask_followup_question",
            "attempt_completion",
        ):
            assert name in registry

        assert registry.large_payload_params() == frozenset(
            {("write_to_file", "content"), ("replace_in_file", "diff")}
        )
        assert registry.param_names().count("path") == 1
