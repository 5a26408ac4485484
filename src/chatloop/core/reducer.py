"""Fold streamed events into a single model turn.

The reducer is a pure function over an immutable :class:`TurnState`. Each
call to :func:`reduce` returns a new state; nothing is shared between steps,
so a turn can be rebuilt from any recorded event sequence.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from .conversation import TextPart, ThoughtPart, ToolCallPart
from .errors import MalformedToolArguments
from .events import (
    ReasoningDelta,
    StreamEvent,
    TextDelta,
    ToolCallArgsDelta,
    ToolCallStart,
    TurnEnd,
)

logger = logging.getLogger(__name__)

OpenKind = Literal["text", "thought"]


@dataclass(frozen=True, slots=True)
class PendingToolCall:
    """A tool call whose serialized arguments are still arriving."""

    key: str
    name: str
    fragment: str = ""


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    """A completed tool call request extracted from a frozen turn."""

    id: str
    name: str
    args: dict[str, Any]


TurnItem = TextPart | ThoughtPart | PendingToolCall


@dataclass(frozen=True, slots=True)
class TurnState:
    """Accumulated state of one streamed turn."""

    items: tuple[TurnItem, ...] = ()
    open_kind: OpenKind | None = None
    open_content: str = ""
    open_signature: str | None = None
    ended: bool = False
    finish_reason: str | None = None
    usage: dict[str, int] | None = None

    @property
    def call_keys(self) -> tuple[str, ...]:
        return tuple(item.key for item in self.items if isinstance(item, PendingToolCall))


@dataclass(slots=True)
class Turn:
    """A frozen turn: ordered model parts plus the tool calls it requested."""

    parts: list[TextPart | ThoughtPart | ToolCallPart] = field(default_factory=list)
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str | None = None
    usage: dict[str, int] | None = None

    @property
    def text(self) -> str:
        return "".join(part.content for part in self.parts if isinstance(part, TextPart))

    def content_parts(self) -> list[TextPart | ThoughtPart]:
        return [part for part in self.parts if isinstance(part, (TextPart, ThoughtPart))]


def reduce(event: StreamEvent, state: TurnState) -> TurnState:
    """Apply one stream event to ``state`` and return the next state."""

    if state.ended:
        logger.debug("Ignoring %s received after turn end", type(event).__name__)
        return state

    if isinstance(event, TextDelta):
        if not event.text:
            return state
        if state.open_kind != "text":
            state = _close_open_part(state)
            state = replace(state, open_kind="text")
        return replace(state, open_content=state.open_content + event.text)

    if isinstance(event, ReasoningDelta):
        if not event.text and event.signature is None:
            return state
        if not event.text:
            # A bare signature belongs to the part that follows it.
            state = _close_open_part(state)
            return replace(state, open_kind="thought", open_signature=event.signature)
        if state.open_kind != "thought" or state.open_signature is not None:
            state = _close_open_part(state)
            state = replace(state, open_kind="thought")
        signature = event.signature if event.signature is not None else state.open_signature
        return replace(
            state,
            open_content=state.open_content + event.text,
            open_signature=signature,
        )

    if isinstance(event, ToolCallStart):
        existing = _find_call(state, event.id)
        if existing is not None:
            if not existing.name and event.name:
                return _replace_call(state, replace(existing, name=event.name))
            return state
        state = _close_open_part(state)
        return replace(state, items=state.items + (PendingToolCall(key=event.id, name=event.name),))

    if isinstance(event, ToolCallArgsDelta):
        existing = _find_call(state, event.id)
        if existing is None:
            logger.warning("Arguments arrived for unknown tool call %r; opening it implicitly", event.id)
            state = _close_open_part(state)
            pending = PendingToolCall(key=event.id, name="", fragment=event.fragment)
            return replace(state, items=state.items + (pending,))
        return _replace_call(state, replace(existing, fragment=existing.fragment + event.fragment))

    if isinstance(event, TurnEnd):
        state = _close_open_part(state)
        return replace(state, ended=True, finish_reason=event.finish_reason, usage=event.usage)

    logger.debug("Unknown stream event %r ignored", event)
    return state


def freeze(state: TurnState) -> Turn:
    """Build the :class:`Turn` described by ``state``.

    Any still-open text or thought part is closed. Argument fragments are
    parsed here; malformed arguments fall back to an empty object.
    """

    state = _close_open_part(state)
    turn = Turn(finish_reason=state.finish_reason, usage=state.usage)
    for item in state.items:
        if isinstance(item, PendingToolCall):
            call_id = item.key or f"call_{uuid.uuid4().hex[:12]}"
            args = parse_tool_arguments(item.fragment, tool_name=item.name)
            turn.parts.append(ToolCallPart(id=call_id, name=item.name, args=args))
            turn.tool_calls.append(ToolCallRequest(id=call_id, name=item.name, args=args))
        else:
            turn.parts.append(item)
    return turn


def parse_tool_arguments(fragment: str, *, tool_name: str = "") -> dict[str, Any]:
    """Decode streamed tool arguments, returning ``{}`` when they are unusable."""

    try:
        return decode_tool_arguments(fragment)
    except MalformedToolArguments as exc:
        logger.warning("Malformed arguments for tool %r; using empty arguments (%s)", tool_name, exc)
        return {}


def decode_tool_arguments(fragment: str) -> dict[str, Any]:
    if not fragment.strip():
        return {}
    try:
        value = json.loads(fragment)
    except json.JSONDecodeError as exc:
        raise MalformedToolArguments(f"Invalid JSON: {exc}") from exc
    if not isinstance(value, dict):
        raise MalformedToolArguments(f"Expected a JSON object, got {type(value).__name__}")
    return value


def _close_open_part(state: TurnState) -> TurnState:
    if state.open_kind is None:
        return state
    part: TextPart | ThoughtPart | None = None
    if state.open_kind == "text":
        if state.open_content:
            part = TextPart(content=state.open_content)
    elif state.open_content or state.open_signature is not None:
        part = ThoughtPart(content=state.open_content, signature=state.open_signature)
    items = state.items + (part,) if part is not None else state.items
    return replace(state, items=items, open_kind=None, open_content="", open_signature=None)


def _find_call(state: TurnState, key: str) -> PendingToolCall | None:
    for item in state.items:
        if isinstance(item, PendingToolCall) and item.key == key:
            return item
    return None


def _replace_call(state: TurnState, updated: PendingToolCall) -> TurnState:
    items = tuple(
        updated if isinstance(item, PendingToolCall) and item.key == updated.key else item
        for item in state.items
    )
    return replace(state, items=items)


__all__ = [
    "PendingToolCall",
    "ToolCallRequest",
    "Turn",
    "TurnState",
    "decode_tool_arguments",
    "freeze",
    "parse_tool_arguments",
    "reduce",
]
