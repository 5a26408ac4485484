"""Project a raw conversation into a canonical, display-ready transcript.

``format_history`` is pure: it never mutates its input and running it over
its own output returns an equal transcript. Tool results do not appear as
entries of their own; they annotate the tool call they answer.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any, Literal

from pydantic import BaseModel, Field

from .conversation import ErrorPart, Message, TextPart, ThoughtPart, ToolCallPart, ToolResultPart
from .logs import LogBuffer

logger = logging.getLogger(__name__)

DisplayRole = Literal["user", "model"]
DisplayPartType = Literal["text", "thought", "tool-call", "error"]
ToolCallStatus = Literal["pending", "done", "error"]

_CONTENT_TYPES = {"text", "thought", "tool-call"}


class DisplayPart(BaseModel):
    """One rendered element of a transcript entry."""

    type: DisplayPartType
    content: str = ""
    signature: str | None = None
    call_id: str | None = None
    name: str | None = None
    args: dict[str, Any] = Field(default_factory=dict)
    result: str | None = None
    is_error: bool = False
    status: ToolCallStatus | None = None
    is_open: bool = False

    @property
    def pending(self) -> bool:
        return self.type == "tool-call" and self.status == "pending"


class DisplayMessage(BaseModel):
    role: DisplayRole
    parts: list[DisplayPart] = Field(default_factory=list)

    def text(self) -> str:
        return "".join(part.content for part in self.parts if part.type == "text")


class _TranscriptBuilder:
    def __init__(self, log_buffer: LogBuffer | None) -> None:
        self.messages: list[DisplayMessage] = []
        self._log_buffer = log_buffer
        self._pending_by_id: dict[str, tuple[int, int]] = {}
        self._pending_by_name: dict[str, list[str]] = {}
        self._start_new = True

    # -- message boundaries -------------------------------------------
    def begin_exchange_entry(self, *, force_new: bool) -> None:
        """Mark where the next model part goes.

        Raw model messages continue the current model entry; an already
        formatted entry always starts a new one.
        """

        self._start_new = force_new or not self.messages or self.messages[-1].role != "model"

    def add_user(self, parts: Iterable[DisplayPart]) -> None:
        message = DisplayMessage(role="user")
        for part in parts:
            _merge_into(message, part)
        if message.parts:
            self.messages.append(message)
        self._start_new = True

    def add_model_part(self, part: DisplayPart) -> None:
        if part.type == "error":
            current = self._current_model()
            if current is None or any(existing.type in _CONTENT_TYPES for existing in current.parts):
                current = self._open_model()
            current.parts.append(part)
            return
        current = self._current_model() or self._open_model()
        if part.type == "tool-call":
            current.parts.append(part)
            if part.status == "pending" and part.call_id is not None:
                self._register_pending(part, len(self.messages) - 1, len(current.parts) - 1)
            return
        _merge_into(current, part)

    def _current_model(self) -> DisplayMessage | None:
        if self._start_new or not self.messages or self.messages[-1].role != "model":
            return None
        return self.messages[-1]

    def _open_model(self) -> DisplayMessage:
        message = DisplayMessage(role="model")
        self.messages.append(message)
        self._start_new = False
        return message

    # -- tool call pairing --------------------------------------------
    def _register_pending(self, part: DisplayPart, message_index: int, part_index: int) -> None:
        call_id = part.call_id or ""
        self._pending_by_id[call_id] = (message_index, part_index)
        self._pending_by_name.setdefault(part.name or "", []).append(call_id)

    def attach_result(self, result: ToolResultPart) -> None:
        if result.call_id is not None:
            call_id: str | None = result.call_id if result.call_id in self._pending_by_id else None
        else:
            queue = self._pending_by_name.get(result.name) or []
            call_id = next((candidate for candidate in queue if candidate in self._pending_by_id), None)

        if call_id is None:
            self._report_orphan(result)
            return

        message_index, part_index = self._pending_by_id.pop(call_id)
        owner = self._pending_by_name.get(self.messages[message_index].parts[part_index].name or "", [])
        if call_id in owner:
            owner.remove(call_id)
        message = self.messages[message_index]
        message.parts[part_index] = message.parts[part_index].model_copy(
            update={
                "result": result.result,
                "is_error": result.is_error,
                "status": "error" if result.is_error else "done",
            }
        )

    def _report_orphan(self, result: ToolResultPart) -> None:
        reference = result.call_id if result.call_id is not None else f"name={result.name}"
        text = f"Dropped tool result for {result.name!r} with no matching tool call ({reference})"
        logger.warning(text)
        if self._log_buffer is not None:
            self._log_buffer.record("history", text, severity="warning")


def format_history(
    messages: Sequence[Message | DisplayMessage],
    *,
    log_buffer: LogBuffer | None = None,
) -> list[DisplayMessage]:
    """Return the canonical transcript for ``messages``.

    Consecutive model messages of one exchange merge into a single entry.
    Tool calls are paired with their results by call id, or by name in
    oldest-pending-first order when a result carries no id. Results with no
    matching call are dropped and reported to ``log_buffer``.
    """

    builder = _TranscriptBuilder(log_buffer)
    for message in messages:
        if isinstance(message, DisplayMessage):
            _add_display_message(builder, message)
        elif message.role == "user":
            builder.add_user(_user_parts(message))
        elif message.role == "tool-result":
            for part in message.parts:
                if isinstance(part, ToolResultPart):
                    builder.attach_result(part)
        else:
            builder.begin_exchange_entry(force_new=False)
            for part in message.parts:
                converted = _convert_model_part(part)
                if converted is not None:
                    builder.add_model_part(converted)
    _mark_last_thought_open(builder.messages)
    return builder.messages


def _mark_last_thought_open(messages: list[DisplayMessage]) -> None:
    # Only a thought ending the transcript is still in progress.
    for message in messages:
        for part in message.parts:
            part.is_open = False
    if messages and messages[-1].parts and messages[-1].parts[-1].type == "thought":
        messages[-1].parts[-1].is_open = True


def _add_display_message(builder: _TranscriptBuilder, message: DisplayMessage) -> None:
    if message.role == "user":
        builder.add_user(part.model_copy(deep=True) for part in message.parts)
        return
    builder.begin_exchange_entry(force_new=True)
    for part in message.parts:
        builder.add_model_part(part.model_copy(deep=True))


def _user_parts(message: Message) -> list[DisplayPart]:
    return [DisplayPart(type="text", content=part.content) for part in message.parts if isinstance(part, TextPart)]


def _convert_model_part(part: Any) -> DisplayPart | None:
    if isinstance(part, TextPart):
        return DisplayPart(type="text", content=part.content)
    if isinstance(part, ThoughtPart):
        return DisplayPart(type="thought", content=part.content, signature=part.signature)
    if isinstance(part, ToolCallPart):
        return DisplayPart(
            type="tool-call",
            call_id=part.id,
            name=part.name,
            args=dict(part.args),
            status="pending",
        )
    if isinstance(part, ErrorPart):
        return DisplayPart(type="error", content=part.content, is_error=True)
    logger.debug("Skipping unexpected part %r in model message", part)
    return None


def _merge_into(message: DisplayMessage, part: DisplayPart) -> None:
    previous = message.parts[-1] if message.parts else None
    if (
        previous is not None
        and previous.type == part.type
        and part.type in {"text", "thought"}
        and previous.signature is None
        and part.signature is None
    ):
        message.parts[-1] = previous.model_copy(update={"content": previous.content + part.content})
        return
    message.parts.append(part)


__all__ = ["DisplayMessage", "DisplayPart", "format_history"]
