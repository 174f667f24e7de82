"""Tool declaration and dispatch.

Tools are plain (sync or async) functions declared with ``@tool``. Their
signature becomes a pydantic input model, so the string parameters the
parser extracts are validated and coerced before the handler runs::

    @tool("read_file", description="Read a file")
    def read_file(path: str) -> str:
        ...

    dispatcher = ToolDispatcher([read_file])
    result = await dispatcher.dispatch(block)
"""

from __future__ import annotations

import inspect
import json
import logging
import time
from typing import Any, Callable, Iterable, Optional, get_type_hints

from opentelemetry import trace
from pydantic import BaseModel, ValidationError, create_model

from .protocol.types import ToolResultPart, ToolUseBlock
from .protocol.vocabulary import (
    ToolDescriptor,
    ToolParameter,
    ToolRegistry,
    create_default_registry,
)

# Get tracer for tool dispatch spans
tracer = trace.get_tracer(__name__)

_JSON_TYPES = {"integer": "number", "number": "number", "boolean": "boolean"}


class Tool:
    """A registered tool: metadata, input model and handler function."""

    def __init__(
        self,
        name: str,
        description: str,
        func: Callable[..., Any],
        input_model: Optional[type[BaseModel]],
        output_model: Optional[type[BaseModel]],
        large_payload: Iterable[str] = (),
        requires_approval: bool = False,
        category: Optional[str] = None,
    ):
        self.name = name
        self.description = description
        self.func = func
        self.input_model = input_model
        self.output_model = output_model
        self.large_payload = frozenset(large_payload)
        self.requires_approval = requires_approval
        self.category = category

    @property
    def parameters_schema(self) -> str:
        """Returns JSON Schema for tool parameters."""
        if self.input_model:
            return json.dumps(self.input_model.model_json_schema(), separators=(",", ":"))
        return "{}"

    @property
    def descriptor(self) -> ToolDescriptor:
        """Vocabulary entry for this tool, derived from its input model."""
        parameters = []
        if self.input_model:
            schema = self.input_model.model_json_schema()
            required = set(schema.get("required", []))
            for name, prop in schema.get("properties", {}).items():
                parameters.append(
                    ToolParameter(
                        name=name,
                        type=_JSON_TYPES.get(prop.get("type"), "string"),
                        description=prop.get("description", prop.get("title", name)),
                        required=name in required,
                        default=prop.get("default"),
                        large_payload=name in self.large_payload,
                    )
                )
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            parameters=parameters,
            category=self.category,
        )

    async def invoke(self, params: dict[str, str]) -> Any:
        """Validate ``params`` and call the handler.

        Raises:
            ValidationError: If the parameters do not fit the input model
        """
        kwargs: dict[str, Any] = {}
        if self.input_model:
            validated = self.input_model.model_validate(params)
            kwargs = {name: getattr(validated, name) for name in self.input_model.model_fields}
        result = self.func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


def _model_from_signature(
    func: Callable[..., Any],
) -> tuple[Optional[type[BaseModel]], Optional[type[BaseModel]]]:
    """Extract input/output Pydantic models from function signature."""
    sig = inspect.signature(func)
    try:
        hints = get_type_hints(func)
    except NameError:
        # Forward references to names local to the defining scope
        hints = {}
    fields = {}
    for name, param in sig.parameters.items():
        if name == "self":
            continue
        ann = (
            hints.get(name, param.annotation)
            if param.annotation is not inspect.Parameter.empty
            else (str if param.default is inspect.Parameter.empty else type(param.default))
        )
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[name] = (ann, default)
    model_name = "".join(part.capitalize() for part in func.__name__.split("_")) + "Input"
    input_model = create_model(model_name, **fields) if fields else None

    # Output model: from return annotation if it's a BaseModel subtype
    return_ann = hints.get("return", sig.return_annotation)
    output_model = None
    if inspect.isclass(return_ann) and issubclass(return_ann, BaseModel):
        output_model = return_ann
    return input_model, output_model


def tool(
    name: str,
    description: str = "",
    *,
    large_payload: Iterable[str] = (),
    requires_approval: bool = False,
    category: Optional[str] = None,
):
    """Decorator to declare a callable as a tool the model can invoke.

    Args:
        name: Tool name, used as the outer tag (e.g., "read_file")
        description: Human-readable description shown in the system prompt
        large_payload: Parameters whose values may contain their own closing tag
        requires_approval: Ask the permission callback before every call
        category: Grouping used when listing tools

    Example:
        @tool("write_to_file", description="Write a file", large_payload=["content"])
        async def write_to_file(path: str, content: str) -> str:
            ...
    """

    def wrapper(func: Callable[..., Any]):
        input_model, output_model = _model_from_signature(func)
        t = Tool(
            name=name,
            description=description or (func.__doc__ or "").strip(),
            func=func,
            input_model=input_model,
            output_model=output_model,
            large_payload=large_payload,
            requires_approval=requires_approval,
            category=category,
        )
        func.__taskloop_tool__ = t
        return func

    return wrapper


def as_tool(obj: Any) -> Tool:
    if isinstance(obj, Tool):
        return obj
    t = getattr(obj, "__taskloop_tool__", None)
    if t is None:
        raise TypeError(f"{obj!r} is not a tool; decorate it with @tool")
    return t


def format_output(result: Any) -> str:
    """Render a handler's return value as the tool result payload."""
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    if isinstance(result, BaseModel):
        return result.model_dump_json(indent=2)
    try:
        return json.dumps(result, indent=2, default=str)
    except (TypeError, ValueError):
        return str(result)


class ToolDispatcher:
    """Runs completed tool invocations and turns every outcome into a result.

    dispatch() never raises for tool problems: unknown tools, invalid
    parameters, denied approval and handler exceptions all come back as an
    error ToolResultPart so the conversation can continue.
    """

    def __init__(
        self,
        tools: Iterable[Any] = (),
        permission_callback: Optional[Callable[..., Any]] = None,
        include_default_vocabulary: bool = True,
    ):
        """Initialize dispatcher.

        Args:
            tools: @tool-decorated functions or Tool objects
            permission_callback: Called as (name, params) for tools that require
                approval; returns (or resolves to) a bool
            include_default_vocabulary: Start the registry from the default
                coding-assistant vocabulary
        """
        self._tools: dict[str, Tool] = {}
        self.permission_callback = permission_callback
        self.registry = create_default_registry() if include_default_vocabulary else ToolRegistry()
        for obj in tools:
            self.register(obj)

    def register(self, obj: Any) -> Tool:
        t = as_tool(obj)
        self._tools[t.name] = t
        self.registry.register(t.descriptor)
        return t

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    async def dispatch(self, block: ToolUseBlock) -> ToolResultPart:
        """Execute one completed tool invocation.

        Raises:
            ValueError: If ``block`` is still partial
        """
        if block.partial:
            raise ValueError(f"Refusing to dispatch partial tool use: {block.name}")

        with tracer.start_as_current_span(
            "tools.dispatch",
            attributes={
                "tool.name": block.name,
                "tool.arguments": json.dumps(block.params)[:500],
            },
        ) as span:
            start = time.time()
            result = await self._run(block)
            latency_ms = int((time.time() - start) * 1000)

            span.set_attribute("tool.success", not result.is_error)
            span.set_attribute("tool.latency_ms", latency_ms)
            span.set_attribute("tool.output.size", len(result.payload))
            if result.is_error:
                span.set_status(trace.Status(trace.StatusCode.ERROR, result.payload[:200]))
            else:
                span.set_status(trace.Status(trace.StatusCode.OK))
            return result

    async def _run(self, block: ToolUseBlock) -> ToolResultPart:
        t = self._tools.get(block.name)
        if t is None:
            logging.warning("[taskloop.tools] No handler for tool '%s'", block.name)
            return ToolResultPart(block.name, f"Unknown tool: {block.name}", is_error=True)

        if t.requires_approval and not await self._approved(block):
            return ToolResultPart(block.name, "Action denied by user", is_error=True)

        try:
            output = await t.invoke(block.params)
        except ValidationError as e:
            logging.warning("[taskloop.tools] Invalid parameters for '%s': %s", block.name, e)
            return ToolResultPart(block.name, f"Invalid parameters: {e}", is_error=True)
        except Exception as e:
            logging.error("[taskloop.tools] Tool '%s' failed: %s", block.name, e)
            return ToolResultPart(block.name, f"Error: {e}", is_error=True)

        return ToolResultPart(block.name, format_output(output))

    async def _approved(self, block: ToolUseBlock) -> bool:
        if not self.permission_callback:
            return False
        try:
            result = self.permission_callback(block.name, dict(block.params))
            if inspect.isawaitable(result):
                result = await result
            return bool(result)
        except Exception as e:
            logging.error("[taskloop.tools] Permission callback failed: %s", e)
            return False


__all__ = ["Tool", "tool", "ToolDispatcher", "format_output"]
