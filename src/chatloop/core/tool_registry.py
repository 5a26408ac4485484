"""In-process tool registry.

Embedding applications register Python handlers grouped into toolkits and hand
the registry to the chat loop in place of an MCP tool server.
"""

from __future__ import annotations

from typing import Any

from chatloop.core.tools.base import (
    Tool,
    ToolAlreadyRegisteredError,
    ToolCallResult,
    ToolInvocationError,
    Toolkit,
    ToolkitAlreadyRegisteredError,
    ToolNotFoundError,
    ToolRegistryError,
    ToolResult,
    ToolSchema,
)


class ToolRegistry:
    """Stores tool handlers grouped by toolkits."""

    def __init__(self, toolkits: list[Toolkit] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        self._toolkits: dict[str, Toolkit] = {}
        if toolkits:
            for toolkit in toolkits:
                self.add_toolkit(toolkit)

    def add_toolkit(self, toolkit: Toolkit, *, overwrite: bool = False) -> None:
        previous_toolkit = self._toolkits.get(toolkit.name)
        if previous_toolkit is not None:
            if not overwrite:
                raise ToolkitAlreadyRegisteredError(
                    f"Toolkit '{toolkit.name}' already registered"
                )
            for tool in previous_toolkit.tools:
                self.unregister(tool.name)

        registered: list[str] = []
        try:
            for tool in toolkit.tools:
                self.register(tool, overwrite=overwrite)
                registered.append(tool.name)
        except Exception:
            for tool_name in registered:
                self.unregister(tool_name)
            if previous_toolkit is not None:
                for tool in previous_toolkit.tools:
                    self.register(tool, overwrite=True)
                self._toolkits[toolkit.name] = previous_toolkit
            raise

        self._toolkits[toolkit.name] = toolkit

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if not overwrite and tool.name in self._tools:
            raise ToolAlreadyRegisteredError(f"Tool '{tool.name}' already registered")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError as exc:
            raise ToolNotFoundError(f"Unknown tool '{name}'") from exc

    def available_tools(self) -> dict[str, Tool]:
        return dict(self._tools)

    def available_toolkits(self) -> dict[str, Toolkit]:
        return dict(self._toolkits)

    def invoke(self, name: str, payload: dict[str, Any] | None = None) -> ToolResult:
        tool = self.get(name)
        try:
            return tool.handler(payload or {})
        except ToolInvocationError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ToolInvocationError(f"Tool '{name}' failed: {exc}") from exc

    # Tool execution service interface -----------------------------------
    def list_tools(self) -> list[ToolSchema]:
        return [
            ToolSchema(name=tool.name, description=tool.description, input_schema=tool.input_schema)
            for tool in self._tools.values()
        ]

    def call_tool(self, name: str, args: dict[str, Any]) -> ToolCallResult:
        result = self.invoke(name, args)
        return ToolCallResult.text(result.content)


__all__ = [
    "ToolRegistry",
    "Tool",
    "ToolResult",
    "ToolRegistryError",
    "ToolNotFoundError",
    "ToolAlreadyRegisteredError",
    "ToolInvocationError",
    "Toolkit",
    "ToolkitAlreadyRegisteredError",
]
