"""Sequential execution of the tool calls requested in one turn."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from .cancellation import CancellationToken, is_cancelled
from .conversation import ToolCallRecord
from .logs import LogBuffer
from .output import OutputSink, notify
from .reducer import ToolCallRequest
from .tools.base import ToolCallResult, ToolService

logger = logging.getLogger(__name__)

CANCELLED_RESULT = "Tool call cancelled before execution."


class ToolExecutionCoordinator:
    """Runs tool calls against a tool service and captures their outcomes.

    Failures never propagate: a raising service or an error payload produces a
    record with ``is_error=True`` so the next model iteration can react to it.
    Calls run one at a time, in request order.
    """

    def __init__(
        self,
        service: ToolService,
        *,
        sink: OutputSink | None = None,
        log_buffer: LogBuffer | None = None,
    ) -> None:
        self._service = service
        self._sink = sink
        self._log_buffer = log_buffer

    def execute(
        self,
        calls: Sequence[ToolCallRequest],
        cancel: CancellationToken | None = None,
    ) -> list[ToolCallRecord]:
        records: list[ToolCallRecord] = []
        for call in calls:
            record = ToolCallRecord(id=call.id, name=call.name, args=dict(call.args))
            records.append(record)
            if is_cancelled(cancel):
                logger.info("Skipping tool %s (%s): exchange cancelled", call.name, call.id)
                record.resolve(CANCELLED_RESULT, is_error=True)
                continue
            notify(self._sink, "tool_call", record)
            self._run(record)
            notify(self._sink, "tool_result", record)
        return records

    def _run(self, record: ToolCallRecord) -> None:
        try:
            payload = self._service.call_tool(record.name, record.args)
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or type(exc).__name__
            logger.warning("Tool %s failed: %s", record.name, message)
            self._record("tool", f"Tool {record.name} failed: {message}", severity="warning")
            record.resolve(message, is_error=True)
            return

        text, is_error = result_to_text(payload)
        if is_error:
            logger.warning("Tool %s returned an error: %s", record.name, text)
            self._record("tool", f"Tool {record.name} returned an error: {text}", severity="warning")
        else:
            logger.debug("Tool %s completed", record.name)
        record.resolve(text, is_error=is_error)

    def _record(self, category: str, message: str, *, severity: str) -> None:
        if self._log_buffer is not None:
            self._log_buffer.record(category, message, severity=severity)


def result_to_text(payload: ToolCallResult | Mapping[str, Any] | Any) -> tuple[str, bool]:
    """Reduce a tool service payload to ``(display_text, is_error)``."""

    if isinstance(payload, ToolCallResult):
        content: Any = payload.content
        is_error = payload.is_error
        fallback: Any = payload.as_dict()
    elif isinstance(payload, Mapping):
        content = payload.get("content")
        is_error = bool(payload.get("isError", payload.get("is_error", False)))
        fallback = dict(payload)
    elif isinstance(payload, str):
        return payload, False
    else:
        return _to_json(payload), False

    if isinstance(content, list) and content:
        first = content[0]
        if isinstance(first, Mapping) and isinstance(first.get("text"), str):
            return first["text"], is_error
        return _to_json(first), is_error
    if isinstance(content, str):
        return content, is_error
    return _to_json(fallback), is_error


def _to_json(value: Any) -> str:
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


__all__ = ["CANCELLED_RESULT", "ToolExecutionCoordinator", "result_to_text"]
