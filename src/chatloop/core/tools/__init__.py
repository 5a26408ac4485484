"""Tool service types shared by the registry, the MCP client and the coordinator."""

from .base import (
    NoToolsService,
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
    ToolService,
)

__all__ = [
    "NoToolsService",
    "Tool",
    "ToolAlreadyRegisteredError",
    "ToolCallResult",
    "ToolInvocationError",
    "Toolkit",
    "ToolkitAlreadyRegisteredError",
    "ToolNotFoundError",
    "ToolRegistryError",
    "ToolResult",
    "ToolSchema",
    "ToolService",
]
