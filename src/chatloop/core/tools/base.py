"""Shared types for tool execution services."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from chatloop.core.errors import ToolExecutionError


class ToolRegistryError(ToolExecutionError):
    """Base error for tool registry failures."""


class ToolAlreadyRegisteredError(ToolRegistryError):
    """Raised when attempting to register a tool with a duplicate name."""


class ToolNotFoundError(ToolRegistryError):
    """Raised when invoking an unknown tool."""


class ToolInvocationError(ToolRegistryError):
    """Raised when a tool handler fails."""


class ToolkitAlreadyRegisteredError(ToolRegistryError):
    """Raised when attempting to register a toolkit twice."""


@dataclass(slots=True)
class ToolSchema:
    """Description of a tool advertised to the model backend."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    @classmethod
    def from_mcp(cls, payload: Mapping[str, Any]) -> ToolSchema:
        schema = payload.get("inputSchema")
        if not isinstance(schema, dict):
            schema = {"type": "object", "properties": {}}
        return cls(
            name=str(payload.get("name", "")),
            description=str(payload.get("description") or ""),
            input_schema=schema,
        )


@dataclass(slots=True)
class ToolCallResult:
    """Outcome returned by a tool service, shaped like an MCP ``tools/call`` result."""

    content: list[dict[str, Any]] = field(default_factory=list)
    is_error: bool = False
    structured: Any | None = None

    @classmethod
    def text(cls, text: str, *, is_error: bool = False) -> ToolCallResult:
        return cls(content=[{"type": "text", "text": text}], is_error=is_error)

    @classmethod
    def from_mcp(cls, payload: Mapping[str, Any]) -> ToolCallResult:
        content = payload.get("content")
        items = [item for item in content if isinstance(item, dict)] if isinstance(content, list) else []
        return cls(
            content=items,
            is_error=bool(payload.get("isError", False)),
            structured=payload.get("structuredContent"),
        )

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"content": list(self.content), "isError": self.is_error}
        if self.structured is not None:
            payload["structuredContent"] = self.structured
        return payload


class ToolService(Protocol):
    """Interface for anything able to list and execute tools."""

    def list_tools(self) -> list[ToolSchema]:
        ...

    def call_tool(self, name: str, args: dict[str, Any]) -> ToolCallResult | Mapping[str, Any]:
        ...


class NoToolsService:
    """Tool service used when no tool server is configured.

    It advertises nothing, so a conforming model never calls it; a call that
    arrives anyway fails like any unknown tool.
    """

    def list_tools(self) -> list[ToolSchema]:
        return []

    def call_tool(self, name: str, args: dict[str, Any]) -> ToolCallResult:
        raise ToolNotFoundError(f"No tool service is configured; cannot call '{name}'")


@dataclass(slots=True)
class ToolResult:
    """Represents the outcome of invoking an in-process tool handler."""

    content: str
    summary: str | None = None
    data: Any | None = None


@dataclass(slots=True)
class Tool:
    """Metadata for a registered in-process tool."""

    name: str
    description: str
    input_schema: dict[str, Any]
    handler: Callable[[dict[str, Any]], ToolResult]


@dataclass(slots=True)
class Toolkit:
    """Groups related tools together."""

    name: str
    version: str
    description: str
    tools: list[Tool]
