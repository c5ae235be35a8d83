"""
Tests for tools module.
"""

import asyncio
import json
import threading

import httpx
import pytest

from agent_runtime.agent.store import InMemoryMessageStore
from agent_runtime.llm.base import ToolCall, ToolDefinition
from agent_runtime.tools.base import FunctionPlugin, Plugin, Tool, ToolParameter, ToolResult
from agent_runtime.tools.builtin import (
    WEB_CATEGORY,
    WEB_SEARCH_TOOL,
    extract_page_text,
    get_current_time,
    make_web_search,
    register_builtin_tools,
)
from agent_runtime.tools.executor import ToolExecutor
from agent_runtime.tools.registry import CORE_CATEGORY, ToolRegistry, get_tool_registry


class EchoPlugin(Plugin):
    """Plugin that echoes its raw arguments."""

    def __init__(self):
        self.calls = []

    async def execute(self, tool_name: str, arguments: str) -> ToolResult:
        self.calls.append((tool_name, arguments))
        return ToolResult(success=True, output=f"{tool_name}:{arguments}")


class FailingPlugin(Plugin):
    async def execute(self, tool_name: str, arguments: str) -> ToolResult:
        raise RuntimeError("boom")


class SlowPlugin(Plugin):
    def __init__(self, delay: float):
        self.delay = delay

    async def execute(self, tool_name: str, arguments: str) -> ToolResult:
        await asyncio.sleep(self.delay)
        return ToolResult(success=True, output=f"{tool_name} done")


def _definition(name: str, timeout: float | None = None) -> ToolDefinition:
    return ToolDefinition(name=name, description=f"{name} tool", parameters={"type": "object"}, timeout=timeout)


# -- base ------------------------------------------------------------------


def test_tool_result_success():
    """Test successful tool result."""
    result = ToolResult(success=True, output="Test output", data={"key": "value"})

    assert result.success is True
    assert result.output == "Test output"
    assert result.data == {"key": "value"}
    assert result.error is None


def test_tool_parameters_schema():
    """Test converting tool parameters to JSON schema."""

    async def handler(query: str, limit: int = 5) -> ToolResult:
        return ToolResult(success=True)

    tool = Tool(
        name="search",
        description="Search",
        parameters=[
            ToolParameter(name="query", param_type="string", description="Query"),
            ToolParameter(name="limit", param_type="integer", description="Limit", required=False, default=5),
            ToolParameter(
                name="tags", param_type="array", description="Tags", required=False, items={"type": "string"}
            ),
        ],
        handler=handler,
        timeout=10.0,
    )
    definition = tool.to_definition()

    assert definition.name == "search"
    assert definition.timeout == 10.0
    assert definition.parameters["required"] == ["query"]
    assert definition.parameters["properties"]["limit"]["default"] == 5
    assert definition.parameters["properties"]["tags"]["items"] == {"type": "string"}


@pytest.mark.asyncio
async def test_function_plugin_dispatches_keyword_arguments():
    """Test that JSON arguments become keyword arguments."""

    async def add(a: int, b: int) -> ToolResult:
        return ToolResult(success=True, output=str(a + b))

    plugin = FunctionPlugin([Tool("add", "Add", [], add)])

    result = await plugin.execute("add", '{"a": 2, "b": 3}')
    assert result.success
    assert result.output == "5"


@pytest.mark.asyncio
async def test_function_plugin_invalid_arguments():
    """Test malformed and mismatched arguments are failures, not exceptions."""

    async def add(a: int, b: int) -> ToolResult:
        return ToolResult(success=True, output=str(a + b))

    plugin = FunctionPlugin([Tool("add", "Add", [], add)])

    bad_json = await plugin.execute("add", "{not json")
    assert not bad_json.success
    assert "Invalid JSON arguments" in bad_json.error

    not_object = await plugin.execute("add", "[1, 2]")
    assert not not_object.success

    wrong_args = await plugin.execute("add", '{"a": 1}')
    assert not wrong_args.success
    assert "Invalid arguments for add" in wrong_args.error

    unknown = await plugin.execute("sub", "{}")
    assert not unknown.success


# -- registry --------------------------------------------------------------


def test_registry_visibility_gating():
    """Test only core tools are visible until a category is active."""
    registry = ToolRegistry()
    registry.register_plugin("core.p", EchoPlugin(), [_definition("clock")])
    registry.register_plugin("gmail.p", EchoPlugin(), [_definition("send_mail")], category="gmail")

    assert [d.name for d in registry.get_tool_definitions(set())] == ["clock"]
    assert {d.name for d in registry.get_tool_definitions({"gmail"})} == {"clock", "send_mail"}
    assert {d.name for d in registry.get_tool_definitions()} == {"clock", "send_mail"}


def test_registry_last_writer_wins():
    """Test re-registering a name replaces the previous owner."""
    registry = ToolRegistry()
    first, second = EchoPlugin(), EchoPlugin()
    registry.register_plugin("one", first, [_definition("tool")])
    registry.register_plugin("two", second, [_definition("tool")])

    entry = registry.get_tool("tool")
    assert entry.plugin is second
    assert entry.plugin_id == "two"
    assert len(registry) == 1


def test_registry_unregister_plugin():
    """Test unregistering removes every tool of the plugin."""
    registry = ToolRegistry()
    registry.register_plugin("multi", EchoPlugin(), [_definition("a"), _definition("b")], category="x")
    registry.register_plugin("other", EchoPlugin(), [_definition("c")])

    removed = registry.unregister_plugin("multi")

    assert sorted(removed) == ["a", "b"]
    assert registry.list_tools() == ["c"]
    assert registry.get_on_demand_categories() == []
    assert registry.get_category_description("x") is None


def test_registry_categories_and_descriptions():
    """Test on-demand categories are listed with their descriptions."""
    registry = ToolRegistry()
    registry.register_plugin("core.p", EchoPlugin(), [_definition("clock")])
    registry.register_plugin("w", EchoPlugin(), [_definition("browse")], category="web", description="Web access")
    registry.register_plugin("g", EchoPlugin(), [_definition("mail")], category="gmail")

    assert registry.get_on_demand_categories() == ["gmail", "web"]
    assert registry.get_category_description("web") == "Web access"
    assert registry.get_category_description("gmail") is None


def test_registry_parent_layering():
    """Test lookups fall through to the parent and local entries shadow it."""
    parent = ToolRegistry()
    parent_plugin = EchoPlugin()
    parent.register_plugin("shared", parent_plugin, [_definition("shared"), _definition("overridden")])

    child = ToolRegistry(parent=parent)
    child_plugin = EchoPlugin()
    child.register_plugin("local", child_plugin, [_definition("overridden"), _definition("local")])

    assert child.get_tool("shared").plugin is parent_plugin
    assert child.get_tool("overridden").plugin is child_plugin
    assert sorted(child.list_tools()) == ["local", "overridden", "shared"]
    assert "local" not in parent
    assert parent.get_tool("overridden").plugin is parent_plugin

    child.clear()
    assert child.get_tool("overridden").plugin is parent_plugin


def test_registry_copy_filtered_is_independent():
    """Test a filtered copy does not change with the original."""
    registry = ToolRegistry()
    registry.register_plugin("p", EchoPlugin(), [_definition("keep"), _definition("drop")], category="x",
                             description="X tools")

    copy = registry.copy_filtered(lambda entry: entry.name != "drop")
    registry.register_plugin("late", EchoPlugin(), [_definition("late")])
    registry.unregister("keep")

    assert copy.list_tools() == ["keep"]
    assert copy.get_category_description("x") == "X tools"
    assert copy.parent is None


def test_registry_concurrent_registration():
    """Test registration from many threads loses nothing."""
    registry = ToolRegistry()

    def register(i: int) -> None:
        registry.register_plugin(f"p{i}", EchoPlugin(), [_definition(f"tool_{i}")])
        registry.get_tool_definitions(set())

    threads = [threading.Thread(target=register, args=(i,)) for i in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(registry) == 50


def test_global_registry_has_builtins():
    """Test the process-wide registry ships the built-in tools."""
    registry = get_tool_registry()

    assert registry is get_tool_registry()
    assert registry.get_tool("get_current_time").category == CORE_CATEGORY
    assert registry.get_tool(WEB_SEARCH_TOOL).category == WEB_CATEGORY
    assert registry.get_tool("browse_webpage").category == WEB_CATEGORY


# -- executor --------------------------------------------------------------


@pytest.mark.asyncio
async def test_executor_failure_isolation():
    """Test a throwing tool does not abort the rest of the batch."""
    registry = ToolRegistry()
    registry.register_plugin("bad", FailingPlugin(), [_definition("bad")])
    registry.register_plugin("good", EchoPlugin(), [_definition("good")])
    executor = ToolExecutor(registry)

    results = await executor.execute_batch([
        ToolCall(id="1", name="bad", arguments="{}"),
        ToolCall(id="2", name="good", arguments='{"x": 1}'),
    ])

    assert [r.success for r in results] == [False, True]
    assert results[0].result.error == "boom"
    assert results[0].to_llm_content() == "Error: boom"
    assert results[1].to_llm_content() == 'good:{"x": 1}'


@pytest.mark.asyncio
async def test_executor_unknown_tool_lists_available():
    """Test unknown tools fail with the available names."""
    registry = ToolRegistry()
    registry.register_plugin("good", EchoPlugin(), [_definition("good")])
    executor = ToolExecutor(registry)

    result = await executor.execute(ToolCall(id="1", name="missing"))

    assert not result.success
    assert "Tool 'missing' not found" in result.result.error
    assert "good" in result.result.error


@pytest.mark.asyncio
async def test_executor_forwards_raw_arguments():
    """Test arguments reach the plugin unmodified, even if malformed."""
    registry = ToolRegistry()
    plugin = EchoPlugin()
    registry.register_plugin("echo", plugin, [_definition("echo")])

    await ToolExecutor(registry).execute(ToolCall(id="1", name="echo", arguments="{broken"))

    assert plugin.calls == [("echo", "{broken")]


@pytest.mark.asyncio
async def test_executor_timeout():
    """Test a slow tool times out into a failure result."""
    registry = ToolRegistry()
    registry.register_plugin("slow", SlowPlugin(1.0), [_definition("slow", timeout=0.05)])

    result = await ToolExecutor(registry).execute(ToolCall(id="1", name="slow"))

    assert not result.success
    assert "timed out" in result.result.error


@pytest.mark.asyncio
async def test_executor_parallel_preserves_order():
    """Test concurrent execution still returns results in request order."""
    registry = ToolRegistry()
    registry.register_plugin("slow", SlowPlugin(0.1), [_definition("slow")])
    registry.register_plugin("fast", SlowPlugin(0.0), [_definition("fast")])
    executor = ToolExecutor(registry, parallel=True)

    results = await executor.execute_batch([
        ToolCall(id="1", name="slow"),
        ToolCall(id="2", name="fast"),
    ])

    assert [r.tool_call.id for r in results] == ["1", "2"]
    assert [r.result.output for r in results] == ["slow done", "fast done"]


@pytest.mark.asyncio
async def test_executor_propagates_cancellation():
    """Test cancelling a batch is not turned into a failure result."""
    registry = ToolRegistry()
    registry.register_plugin("slow", SlowPlugin(10.0), [_definition("slow")])
    executor = ToolExecutor(registry)

    task = asyncio.create_task(executor.execute_batch([ToolCall(id="1", name="slow")]))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_executor_stores_truncated_results():
    """Test stored results use the same truncation as the history message."""
    registry = ToolRegistry()

    async def big() -> ToolResult:
        return ToolResult(success=True, output="x" * 150)

    registry.register(Tool("big", "Big output", [], big))
    store = InMemoryMessageStore()
    executor = ToolExecutor(registry, message_store=store, max_output_chars=100)

    executions = await executor.execute_batch([ToolCall(id="c1", name="big")], conversation_id="conv")

    stored = store.load("conv")
    assert len(stored) == 1
    assert stored[0].role == "tool"
    assert stored[0].tool_call_id == "c1"
    assert stored[0].name == "big"
    assert stored[0].content == executions[0].to_message(100).content
    assert stored[0].content.endswith("[Output truncated: showing first 100 of 150 characters]")


# -- built-in tools --------------------------------------------------------


@pytest.mark.asyncio
async def test_get_current_time_utc():
    """Test the time tool in UTC."""
    result = await get_current_time()

    assert result.success
    assert result.data["timezone"] == "UTC"


@pytest.mark.asyncio
async def test_get_current_time_unknown_timezone():
    """Test an unknown timezone is a failure result."""
    result = await get_current_time("Not/AZone")

    assert not result.success
    assert "Unknown timezone" in result.error


@pytest.mark.asyncio
async def test_web_search_requires_key():
    """Test web search fails cleanly without an API key."""
    result = await make_web_search("")(query="python")

    assert not result.success
    assert "TAVILY_API_KEY" in result.error


@pytest.mark.asyncio
async def test_web_search_formats_results():
    """Test Tavily results are formatted for the model."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "answer": "Python is a language.",
            "results": [{"title": "Python", "url": "https://python.org", "content": "Official site"}],
        })

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await make_web_search("tv-key", http_client=client)(query="python", max_results=3)

    assert result.success
    assert seen["body"]["query"] == "python"
    assert seen["body"]["max_results"] == 3
    assert "**Summary:** Python is a language." in result.output
    assert "https://python.org" in result.output


def test_extract_page_text():
    """Test readable text and links are extracted from HTML."""
    html = """
    <html><head><title>Example</title><script>var x = 1;</script></head>
    <body><nav>Menu</nav><main><h1>Hello</h1><p>World</p>
    <a href="https://example.org/more">More</a></main></body></html>
    """
    output, data = extract_page_text(html, "https://example.com", extract_links=True)

    assert data["title"] == "Example"
    assert "Hello" in data["content"]
    assert "var x" not in data["content"]
    assert "Menu" not in data["content"]
    assert data["links"] == [{"text": "More", "url": "https://example.org/more"}]
    assert "**Links:**" in output


def test_register_builtin_tools(settings):
    """Test built-in tools register in their categories."""
    registry = ToolRegistry()
    register_builtin_tools(registry, settings)

    assert [d.name for d in registry.get_tool_definitions(set())] == ["get_current_time"]
    assert registry.get_on_demand_categories() == [WEB_CATEGORY]
    assert registry.get_category_description(WEB_CATEGORY)
