from typing import Any

import pytest

from chatloop.core.errors import ToolExecutionError
from chatloop.core.tool_registry import (
    Tool,
    ToolAlreadyRegisteredError,
    ToolInvocationError,
    Toolkit,
    ToolkitAlreadyRegisteredError,
    ToolNotFoundError,
    ToolRegistry,
    ToolResult,
)


def echo_tool(name: str = "echo") -> Tool:
    def handler(payload: dict[str, Any]) -> ToolResult:
        return ToolResult(content=str(payload.get("text", "")))

    return Tool(name=name, description="Echo text", input_schema={"type": "object"}, handler=handler)


def test_register_and_call_tool() -> None:
    registry = ToolRegistry()
    registry.register(echo_tool())

    result = registry.call_tool("echo", {"text": "hi"})

    assert result.content == [{"type": "text", "text": "hi"}]
    assert result.is_error is False
    assert [schema.name for schema in registry.list_tools()] == ["echo"]


def test_duplicate_registration_rejected() -> None:
    registry = ToolRegistry()
    registry.register(echo_tool())

    with pytest.raises(ToolAlreadyRegisteredError):
        registry.register(echo_tool())


def test_unknown_tool_is_a_tool_execution_error() -> None:
    with pytest.raises(ToolNotFoundError) as excinfo:
        ToolRegistry().call_tool("missing", {})
    assert isinstance(excinfo.value, ToolExecutionError)


def test_handler_failure_is_wrapped() -> None:
    def broken(_payload: dict[str, Any]) -> ToolResult:
        raise ValueError("bad input")

    registry = ToolRegistry()
    registry.register(Tool(name="broken", description="", input_schema={}, handler=broken))

    with pytest.raises(ToolInvocationError, match="bad input"):
        registry.call_tool("broken", {})


def test_toolkit_registration_is_atomic() -> None:
    registry = ToolRegistry([Toolkit("base", "1", "", [echo_tool("shared")])])

    with pytest.raises(ToolAlreadyRegisteredError):
        registry.add_toolkit(Toolkit("other", "1", "", [echo_tool("fresh"), echo_tool("shared")]))

    assert set(registry.available_tools()) == {"shared"}
    with pytest.raises(ToolkitAlreadyRegisteredError):
        registry.add_toolkit(Toolkit("base", "2", "", []))


def test_toolkit_overwrite_replaces_tools() -> None:
    registry = ToolRegistry([Toolkit("base", "1", "", [echo_tool("old")])])

    registry.add_toolkit(Toolkit("base", "2", "", [echo_tool("new")]), overwrite=True)

    assert set(registry.available_tools()) == {"new"}
    assert registry.available_toolkits()["base"].version == "2"
