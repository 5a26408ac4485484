"""Provider-neutral stream events consumed by the turn reducer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True, slots=True)
class TextDelta:
    """A fragment of user-facing answer text."""

    text: str


@dataclass(frozen=True, slots=True)
class ReasoningDelta:
    """A fragment of model reasoning, optionally carrying a backend signature."""

    text: str
    signature: str | None = None


@dataclass(frozen=True, slots=True)
class ToolCallStart:
    """Opens a tool call entry identified by the backend's stream key."""

    id: str
    name: str


@dataclass(frozen=True, slots=True)
class ToolCallArgsDelta:
    """A raw fragment of a tool call's serialized JSON arguments."""

    id: str
    fragment: str


@dataclass(frozen=True, slots=True)
class TurnEnd:
    """Marks the end of one streamed turn."""

    finish_reason: str | None = None
    usage: dict[str, int] | None = None


StreamEvent = Union[TextDelta, ReasoningDelta, ToolCallStart, ToolCallArgsDelta, TurnEnd]


__all__ = [
    "TextDelta",
    "ReasoningDelta",
    "ToolCallStart",
    "ToolCallArgsDelta",
    "TurnEnd",
    "StreamEvent",
]
