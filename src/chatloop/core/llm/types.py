"""Shared LLM types."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Literal, Protocol

from chatloop.core.cancellation import CancellationToken
from chatloop.core.conversation import Message
from chatloop.core.events import StreamEvent
from chatloop.core.tools.base import ToolSchema

ApiStyle = Literal["chat", "responses", "gemini"]


@dataclass(slots=True)
class LLMSettings:
    """Runtime configuration for the LLM client."""

    provider: str
    base_url: str
    model: str
    api_key: str | None
    api: ApiStyle = "chat"
    timeout_seconds: float = 60.0
    max_retries: int = 2
    extra_headers: dict[str, str] | None = None


@dataclass(slots=True)
class StreamOptions:
    """Per-request generation options forwarded to the backend."""

    system_prompt: str | None = None
    thinking: str | None = None
    thinking_budget: int | None = None
    output_tokens: int | None = None
    temperature: float | None = None


class ModelBackend(Protocol):
    """Interface for streaming model backends.

    ``stream_turn`` raises :class:`~chatloop.core.errors.BackendUnavailable`
    when the request cannot be dispatched and otherwise returns an iterator
    that yields exactly one ``TurnEnd`` once the stream finishes or is cut off.
    """

    def stream_turn(
        self,
        history: Sequence[Message],
        tool_schemas: Sequence[ToolSchema],
        options: StreamOptions,
        cancel: CancellationToken | None = None,
    ) -> Iterator[StreamEvent]:
        ...


__all__ = ["ApiStyle", "LLMSettings", "ModelBackend", "StreamOptions"]
