"""Tool-calling loop orchestration.

One exchange starts from a user message and alternates between streaming a
model turn and executing the tool calls that turn requested, until the model
answers without tools, the exchange is cancelled, or the iteration cap is hit.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from .cancellation import CancellationToken, is_cancelled
from .conversation import Conversation, Message, ToolCallRecord
from .errors import BackendUnavailable, ToolExecutionError
from .events import ReasoningDelta, StreamEvent, TextDelta
from .llm.types import ModelBackend, StreamOptions
from .logs import LogBuffer
from .output import OutputSink, notify
from .reducer import Turn, TurnState, freeze, reduce
from .tool_executor import ToolExecutionCoordinator
from .tools.base import NoToolsService, ToolSchema, ToolService

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10

StopReason = Literal["completed", "cancelled", "iteration_cap"]


@dataclass
class AgentLoopContext:
    """Encapsulates shared state required by the agent loop."""

    conversation: Conversation
    backend: ModelBackend
    tool_service: ToolService | None = None
    options: StreamOptions = field(default_factory=StreamOptions)
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    cancel: CancellationToken | None = None
    sink: OutputSink | None = None
    log_buffer: LogBuffer | None = None
    payload_log_dir: Path | None = None
    session_id: str | None = None
    _tool_schemas: list[ToolSchema] | None = field(default=None, init=False, repr=False)

    def tool_schemas(self) -> list[ToolSchema]:
        """Fetch the tool list from the service once and reuse it afterwards."""

        if self._tool_schemas is None:
            if self.tool_service is None:
                self._tool_schemas = []
            else:
                try:
                    self._tool_schemas = list(self.tool_service.list_tools())
                except ToolExecutionError as exc:
                    logger.warning("Unable to list tools: %s", exc)
                    self._record("tool", f"Unable to list tools: {exc}", severity="warning")
                    self._tool_schemas = []
        return self._tool_schemas

    def _record(self, category: str, message: str, *, severity: str = "info") -> None:
        if self.log_buffer is not None:
            self.log_buffer.record(category, message, severity=severity)


@dataclass
class ExchangeResult:
    """Outcome of one exchange, returned even when it stopped early."""

    final_text: str
    tool_calls: list[ToolCallRecord]
    stop_reason: StopReason
    iterations: int
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def capped(self) -> bool:
        return self.stop_reason == "iteration_cap"

    @property
    def cancelled(self) -> bool:
        return self.stop_reason == "cancelled"


def run_agent_loop(ctx: AgentLoopContext) -> ExchangeResult:
    """Run the tool-calling loop over ``ctx.conversation``.

    The conversation must already end with the user message being answered.
    Only :class:`BackendUnavailable` escapes; every other failure is recorded
    in the conversation or the returned result.
    """

    schemas = ctx.tool_schemas()
    executor = ToolExecutionCoordinator(
        ctx.tool_service if ctx.tool_service is not None else NoToolsService(),
        sink=ctx.sink,
        log_buffer=ctx.log_buffer,
    )
    max_iterations = max(ctx.max_iterations, 1)
    texts: list[str] = []
    records: list[ToolCallRecord] = []
    usage: dict[str, int] = {}
    iteration = 0
    stop_reason: StopReason = "completed"

    while True:
        if is_cancelled(ctx.cancel):
            stop_reason = "cancelled"
            break

        iteration += 1
        _log_llm_payload(ctx, schemas, iteration)
        turn, cancelled = _stream_iteration(ctx, schemas)
        _merge_usage(usage, turn.usage)
        notify(ctx.sink, "turn_end", iteration)
        if turn.text:
            texts.append(turn.text)

        if cancelled:
            content = turn.content_parts()
            if content:
                ctx.conversation.append(Message(role="model", parts=content))
            if turn.tool_calls:
                logger.info("Discarding %d tool call(s) requested before cancellation", len(turn.tool_calls))
            stop_reason = "cancelled"
            break

        if turn.parts:
            ctx.conversation.append(Message(role="model", parts=turn.parts))
        if not turn.tool_calls:
            stop_reason = "completed"
            break

        batch = executor.execute(turn.tool_calls, ctx.cancel)
        for record in batch:
            ctx.conversation.append(Message.tool_result(record))
        records.extend(batch)

        if is_cancelled(ctx.cancel):
            stop_reason = "cancelled"
            break
        if iteration >= max_iterations:
            message = f"Stopped after {iteration} iterations; the model kept requesting tools."
            logger.warning(message)
            ctx._record("loop", message, severity="warning")
            notify(ctx.sink, "notice", message, severity="warning")
            stop_reason = "iteration_cap"
            break

    if stop_reason == "cancelled":
        ctx._record("loop", f"Exchange cancelled during iteration {iteration}")
    logger.debug("Exchange finished (reason=%s, iterations=%d, usage=%s)", stop_reason, iteration, usage)
    return ExchangeResult(
        final_text="\n".join(texts),
        tool_calls=records,
        stop_reason=stop_reason,
        iterations=iteration,
        usage=usage,
    )


def send_message(
    conversation: Conversation,
    text: str,
    *,
    backend: ModelBackend,
    tool_service: ToolService | None = None,
    options: StreamOptions | None = None,
    max_iterations: int | None = None,
    cancel: CancellationToken | None = None,
    sink: OutputSink | None = None,
    log_buffer: LogBuffer | None = None,
    payload_log_dir: Path | None = None,
) -> ExchangeResult:
    """Append ``text`` as a user message and run one exchange."""

    conversation.append(Message.user(text))
    ctx = AgentLoopContext(
        conversation=conversation,
        backend=backend,
        tool_service=tool_service,
        options=options or StreamOptions(),
        max_iterations=max_iterations or DEFAULT_MAX_ITERATIONS,
        cancel=cancel,
        sink=sink,
        log_buffer=log_buffer,
        payload_log_dir=payload_log_dir,
    )
    return run_agent_loop(ctx)


def _stream_iteration(ctx: AgentLoopContext, schemas: Sequence[ToolSchema]) -> tuple[Turn, bool]:
    """Stream one model turn; returns the frozen turn and whether it was cut short by cancellation."""

    state = TurnState()
    cancelled = False
    stream: Iterator[StreamEvent] | None = None
    try:
        stream = ctx.backend.stream_turn(ctx.conversation.messages, schemas, ctx.options, ctx.cancel)
        for event in stream:
            state = reduce(event, state)
            _forward(ctx.sink, event)
            if state.ended:
                break
            if is_cancelled(ctx.cancel):
                cancelled = True
                break
    except BackendUnavailable as exc:
        logger.error("Model backend unavailable: %s", exc)
        ctx._record("stream", f"Model backend unavailable: {exc}", severity="error")
        partial = freeze(state).content_parts()
        if partial:
            ctx.conversation.append(Message(role="model", parts=partial))
        ctx.conversation.append(Message.error(str(exc)))
        raise
    finally:
        close = getattr(stream, "close", None)
        if callable(close):
            close()

    if state.finish_reason == "cancelled" or is_cancelled(ctx.cancel):
        cancelled = True
    if state.finish_reason == "interrupted":
        ctx._record("stream", "Model stream was interrupted before completion", severity="warning")
    return freeze(state), cancelled


def _forward(sink: OutputSink | None, event: StreamEvent) -> None:
    if isinstance(event, TextDelta) and event.text:
        notify(sink, "text_delta", event.text)
    elif isinstance(event, ReasoningDelta) and event.text:
        notify(sink, "thought_delta", event.text)


def _merge_usage(total: dict[str, int], usage: dict[str, int] | None) -> None:
    if not usage:
        return
    for key, value in usage.items():
        if isinstance(value, int):
            total[key] = total.get(key, 0) + value


def _log_llm_payload(ctx: AgentLoopContext, schemas: Sequence[ToolSchema], iteration: int) -> None:
    if ctx.payload_log_dir is None:
        return
    try:
        ctx.payload_log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S_%f")
        session_id = ctx.session_id or "adhoc"
        payload: dict[str, Any] = {
            "session_id": session_id,
            "timestamp": timestamp,
            "iteration": iteration,
            "system_prompt": ctx.options.system_prompt,
            "tools": [schema.name for schema in schemas],
            "history": ctx.conversation.to_payload(),
        }
        filename = f"{timestamp}_iter{iteration:04d}_{session_id}.json"
        (ctx.payload_log_dir / filename).write_text(json.dumps(payload, indent=2), encoding="utf-8")
    except Exception:  # noqa: BLE001
        logger.debug("Unable to write LLM payload log", exc_info=True)


__all__ = [
    "AgentLoopContext",
    "DEFAULT_MAX_ITERATIONS",
    "ExchangeResult",
    "StopReason",
    "run_agent_loop",
    "send_message",
]
