"""Tests for OpenTelemetry setup and the spans taskloop emits."""

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from taskloop.context import ContextAnalyzer, HistoryCompactor
from taskloop.context.analyzer import AnalyzerConfig
from taskloop.protocol import ToolUseBlock
from taskloop.telemetry import init_telemetry, shutdown_telemetry
from taskloop.tools import ToolDispatcher, tool

# The global tracer provider can only be set once per process, so the whole
# module shares one provider.
EXPORTER = InMemorySpanExporter()


@pytest.fixture(scope="module", autouse=True)
def telemetry():
    provider = init_telemetry(service_name="taskloop-tests", exporter=EXPORTER)
    yield provider
    shutdown_telemetry()


@pytest.fixture(autouse=True)
def clear_spans():
    EXPORTER.clear()
    yield


@tool("read_file")
def read_file(path: str) -> str:
    return f"contents of {path}"


def spans_named(name):
    return [s for s in EXPORTER.get_finished_spans() if s.name == name]


def test_init_is_idempotent(telemetry):
    assert init_telemetry() is telemetry
    assert telemetry.resource.attributes["service.name"] == "taskloop-tests"


@pytest.mark.asyncio
async def test_dispatch_span():
    await ToolDispatcher([read_file]).dispatch(
        ToolUseBlock("read_file", {"path": "a.ts"}, partial=False)
    )

    (span,) = spans_named("tools.dispatch")
    assert span.attributes["tool.name"] == "read_file"
    assert span.attributes["tool.success"] is True


@pytest.mark.asyncio
async def test_compaction_spans(scripted, make_history):
    generate = scripted("INDICES_TO_KEEP: [5]\nSUMMARY_INSTRUCTIONS: short", "memory")
    compactor = HistoryCompactor(generate, ContextAnalyzer(AnalyzerConfig(max_tokens=10)))

    result = await compactor.compact(make_history(6))

    assert result.did_compact
    (compact,) = spans_named("context.compact")
    assert compact.attributes["context.mode"] == "decision"
    assert compact.attributes["context.did_compact"] is True
    assert compact.attributes["context.messages_replaced"] == 4
    purposes = [s.attributes["context.purpose"] for s in spans_named("context.summarize")]
    assert purposes == ["decision", "memory"]
    assert all(s.parent.span_id == compact.context.span_id for s in spans_named("context.summarize"))
