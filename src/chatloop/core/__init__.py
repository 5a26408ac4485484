"""Core services for chatloop."""

from .errors import BackendUnavailable, ChatLoopError, MalformedToolArguments, ToolExecutionError
from .events import ReasoningDelta, StreamEvent, TextDelta, ToolCallArgsDelta, ToolCallStart, TurnEnd
from .cancellation import CancellationToken
from .conversation import (
    Conversation,
    ConversationLoadError,
    ErrorPart,
    Message,
    TextPart,
    ThoughtPart,
    ToolCallPart,
    ToolCallRecord,
    ToolResultPart,
)
from .logs import LogBuffer, LogEntry
from .output import NullSink, OutputSink
from .reducer import Turn, TurnState, ToolCallRequest, freeze, reduce
from .tool_registry import ToolRegistry, ToolRegistryError, ToolResult, Toolkit
from .tool_executor import ToolExecutionCoordinator
from .history import DisplayMessage, DisplayPart, format_history
from .mcp import DEFAULT_MCP_URL, McpClient, McpError
from .agent_loop import (
    DEFAULT_MAX_ITERATIONS,
    AgentLoopContext,
    ExchangeResult,
    run_agent_loop,
    send_message,
)
from .config import (
    DEFAULT_CONFIG_DIR,
    ChatLoopConfig,
    ConfigContext,
    ConfigManager,
    ConfigurationError,
)

__all__ = [
    "AgentLoopContext",
    "BackendUnavailable",
    "CancellationToken",
    "ChatLoopConfig",
    "ChatLoopError",
    "ConfigContext",
    "ConfigManager",
    "ConfigurationError",
    "Conversation",
    "ConversationLoadError",
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_MAX_ITERATIONS",
    "DEFAULT_MCP_URL",
    "DisplayMessage",
    "DisplayPart",
    "ErrorPart",
    "ExchangeResult",
    "LogBuffer",
    "LogEntry",
    "MalformedToolArguments",
    "McpClient",
    "McpError",
    "Message",
    "NullSink",
    "OutputSink",
    "ReasoningDelta",
    "StreamEvent",
    "TextDelta",
    "TextPart",
    "ThoughtPart",
    "ToolCallArgsDelta",
    "ToolCallPart",
    "ToolCallRecord",
    "ToolCallRequest",
    "ToolCallStart",
    "ToolExecutionCoordinator",
    "ToolExecutionError",
    "ToolRegistry",
    "ToolRegistryError",
    "ToolResult",
    "ToolResultPart",
    "Toolkit",
    "Turn",
    "TurnEnd",
    "TurnState",
    "format_history",
    "freeze",
    "reduce",
    "run_agent_loop",
    "send_message",
]
