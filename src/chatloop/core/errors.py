"""Error taxonomy for the chat loop."""

from __future__ import annotations


class ChatLoopError(RuntimeError):
    """Base error for chat loop failures."""


class BackendUnavailable(ChatLoopError):
    """Raised when the model backend cannot be reached or rejects the request."""


class ToolExecutionError(ChatLoopError):
    """Raised by tool services when a tool invocation fails."""


class MalformedToolArguments(ChatLoopError):
    """Raised when streamed tool arguments do not decode to a JSON object."""


__all__ = [
    "ChatLoopError",
    "BackendUnavailable",
    "ToolExecutionError",
    "MalformedToolArguments",
]
